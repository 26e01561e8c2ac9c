import json

from app.schemas.llm import ContentSegment, LLMCompletion

AUTH = {"Authorization": "Bearer good-token"}


def _completion():
    payload = {
        "verdict": "Stay",
        "confidence": 80,
        "one_liner": "No catch",
        "red_flags": [],
        "avoid_if_you_are": [],
        "bottom_line": "Book it.",
    }
    return LLMCompletion(stop_reason="end_turn", segments=[ContentSegment(type="text", text=json.dumps(payload))])


async def _verdict_id(client, llm) -> int:
    llm.return_value = _completion()
    resp = await client.post(
        "/analyze",
        json={
            "hotel": {"hotel_name": "Hotel Central", "rating": 9.1, "url": "https://www.booking.com/hotel/fr/central.html"},
            "reviews": [{"author": "a", "score": 9, "pros": "Lovely"}],
        },
        headers=AUTH,
    )
    assert resp.status_code == 200
    return resp.json()["verdict_id"]


async def test_feedback_requires_auth(client):
    resp = await client.post("/feedback", json={"verdict_id": 1, "type": "helpful"})

    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized", "code": "UNAUTHORIZED"}


async def test_feedback_with_invalid_token(client):
    resp = await client.post(
        "/feedback",
        json={"verdict_id": 1, "type": "helpful"},
        headers={"Authorization": "Bearer expired"},
    )
    assert resp.status_code == 401


async def test_submit_feedback(client, llm):
    verdict_id = await _verdict_id(client, llm)

    resp = await client.post(
        "/feedback",
        json={"verdict_id": verdict_id, "type": "inaccurate", "details": "The noise was fixed last year"},
        headers=AUTH,
    )

    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["id"] > 0


async def test_feedback_details_are_optional(client, llm):
    verdict_id = await _verdict_id(client, llm)

    resp = await client.post("/feedback", json={"verdict_id": verdict_id, "type": "helpful"}, headers=AUTH)
    assert resp.status_code == 200


async def test_feedback_missing_fields(client):
    for body in ({"type": "helpful"}, {"verdict_id": 3}, {}):
        resp = await client.post("/feedback", json=body, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing required fields", "code": "INVALID_REQUEST"}


async def test_feedback_invalid_type(client):
    resp = await client.post("/feedback", json={"verdict_id": 3, "type": "angry"}, headers=AUTH)

    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid feedback type", "code": "INVALID_TYPE"}

from app.schemas.responses import AnalyzeResponse

FREE_VISIBLE_ITEMS = 1


def apply_visibility(response: AnalyzeResponse, has_purchased: bool) -> AnalyzeResponse:
    """Annotate which parts the client should render blurred.

    Nothing is removed: verdict, confidence and one-liner are always shown,
    and red flags / personas carry visible and hidden counts for the UI.
    """
    red_flags = len(response.red_flags)
    personas = len(response.avoid_if_you_are)

    if has_purchased:
        return response.model_copy(
            update={
                "is_blurred": False,
                "red_flags_visible_count": red_flags,
                "red_flags_hidden_count": 0,
                "avoid_if_visible_count": personas,
                "avoid_if_hidden_count": 0,
            }
        )

    visible_flags = min(FREE_VISIBLE_ITEMS, red_flags)
    visible_personas = min(FREE_VISIBLE_ITEMS, personas)
    return response.model_copy(
        update={
            "is_blurred": True,
            "red_flags_visible_count": visible_flags,
            "red_flags_hidden_count": red_flags - visible_flags,
            "avoid_if_visible_count": visible_personas,
            "avoid_if_hidden_count": personas - visible_personas,
        }
    )

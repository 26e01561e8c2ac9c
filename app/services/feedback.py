import logging
import sqlite3

from app.exceptions.custom import FeedbackError, InvalidFeedbackTypeError, InvalidRequestError
from app.schemas.feedback import FeedbackRequest, FeedbackResult, FeedbackType
from app.services.storage import SqliteStore

logger = logging.getLogger(__name__)


class FeedbackService:
    """Stores user reactions to a verdict."""

    def __init__(self, store: SqliteStore):
        self._store = store

    def submit(self, user_id: str, request: FeedbackRequest) -> FeedbackResult:
        if not request.verdict_id or not request.type:
            raise InvalidRequestError()
        try:
            feedback_type = FeedbackType(request.type)
        except ValueError:
            raise InvalidFeedbackTypeError(request.type) from None

        try:
            feedback_id = self._store.insert_feedback(
                user_id, request.verdict_id, feedback_type.value, request.details or None
            )
        except sqlite3.Error as exc:
            raise FeedbackError(detail=str(exc)) from exc

        logger.info("Feedback %s on verdict %d from %s", feedback_type.value, request.verdict_id, user_id)
        return FeedbackResult(id=feedback_id)

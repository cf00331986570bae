from __future__ import annotations

from typing import Any, Dict


class TriviaError(Exception):
    """Base class for errors the game core reports to its callers."""

    code = "trivia_error"
    status_code = 400

    def detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class SessionNotFound(TriviaError):
    code = "session_not_found"
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__("Invalid or expired session")
        self.session_id = session_id


class SessionExpired(SessionNotFound):
    """The session exists but has been closed by a results fetch."""


class QuestionNotInSession(TriviaError):
    code = "question_not_in_session"

    def __init__(self, question_id: str):
        super().__init__(f"Question {question_id} not found in session")
        self.question_id = question_id


class WagerNotAllowed(TriviaError):
    code = "wager_not_allowed"

    def __init__(self):
        super().__init__("Wager only allowed on final question")


class InvalidWager(TriviaError):
    code = "invalid_wager"

    def __init__(self, wager: int):
        super().__init__("Wager must be non-negative")
        self.wager = wager


class WagerTooLarge(TriviaError):
    code = "wager_too_large"

    def __init__(self, wager: int, max_wager: int):
        super().__init__(f"Wager {wager} exceeds maximum allowed {max_wager}")
        self.wager = wager
        self.max_wager = max_wager

    def detail(self) -> Dict[str, Any]:
        return {**super().detail(), "max_wager": self.max_wager}


class PoolExhausted(TriviaError):
    """Adaptive pools have nothing left to serve. Logged, never surfaced."""

    code = "pool_exhausted"
    status_code = 500


class CollectionNotFound(TriviaError):
    code = "collection_not_found"
    status_code = 404


class NoQuestionsAvailable(TriviaError):
    code = "no_questions_available"
    status_code = 404


class StorageUnavailable(TriviaError):
    code = "storage_unavailable"
    status_code = 503

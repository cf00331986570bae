"""Client-side game phase machine.

A pure reducer mirroring the server's session transitions so a presentation
layer can tell which inputs are currently meaningful. Rejected actions
return the state object unchanged.

    idle -> answering -> locked -> revealing -> answering ...
    revealing (second to last) -> final-announcement -> wagering -> wager-locked
    wager-locked -> answering (final) -> selected -> locked -> revealing -> complete

The round length comes from START_GAME. In adaptive rounds only the first
question is known up front; each reveal carries the id of the question the
server appended next.
"""

from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Phase = Literal[
    "idle",
    "answering",
    "selected",
    "locked",
    "revealing",
    "final-announcement",
    "wagering",
    "wager-locked",
    "complete",
]


class RevealedAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_id: str
    selected_option: Optional[int]
    correct: bool
    points: int
    time_remaining: float


class GameState(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: Phase = "idle"
    session_id: Optional[str] = None
    question_ids: List[str] = Field(default_factory=list)
    # adaptive rounds start with one known question and grow as answers are revealed
    total_questions: int = 0
    current_index: int = 0
    selected_option: Optional[int] = None
    answers: List[RevealedAnswer] = Field(default_factory=list)
    score: int = 0
    wager: int = 0
    is_timer_paused: bool = False

    @property
    def final_index(self) -> int:
        return max(self.total_questions, len(self.question_ids)) - 1

    @property
    def on_final_question(self) -> bool:
        return bool(self.question_ids) and self.current_index == self.final_index

    @property
    def max_wager(self) -> int:
        return max(0, self.score // 2)


INITIAL_STATE = GameState()


class StartGame(BaseModel):
    type: Literal["START_GAME"] = "START_GAME"
    session_id: str
    question_ids: List[str]
    total_questions: Optional[int] = None


class SelectAnswer(BaseModel):
    type: Literal["SELECT_ANSWER"] = "SELECT_ANSWER"
    option_index: int


class LockAnswer(BaseModel):
    type: Literal["LOCK_ANSWER"] = "LOCK_ANSWER"


class RevealAnswer(BaseModel):
    """Carries the server's verdict for the locked answer."""

    type: Literal["REVEAL_ANSWER"] = "REVEAL_ANSWER"
    correct: bool
    points: int
    time_remaining: float
    next_question_id: Optional[str] = None


class Timeout(BaseModel):
    type: Literal["TIMEOUT"] = "TIMEOUT"
    points: int = 0
    time_remaining: float = 0
    next_question_id: Optional[str] = None


class NextQuestion(BaseModel):
    type: Literal["NEXT_QUESTION"] = "NEXT_QUESTION"


class StartWager(BaseModel):
    type: Literal["START_WAGER"] = "START_WAGER"


class SetWager(BaseModel):
    type: Literal["SET_WAGER"] = "SET_WAGER"
    amount: int


class LockWager(BaseModel):
    type: Literal["LOCK_WAGER"] = "LOCK_WAGER"


class QuitGame(BaseModel):
    type: Literal["QUIT_GAME"] = "QUIT_GAME"


GameAction = Union[
    StartGame,
    SelectAnswer,
    LockAnswer,
    RevealAnswer,
    Timeout,
    NextQuestion,
    StartWager,
    SetWager,
    LockWager,
    QuitGame,
]


def clamp_wager(amount: int, score: int) -> int:
    return max(0, min(amount, max(0, score // 2)))


def _record(
    state: GameState,
    selected: Optional[int],
    correct: bool,
    points: int,
    time_remaining: float,
    next_question_id: Optional[str],
) -> GameState:
    answer = RevealedAnswer(
        question_id=state.question_ids[state.current_index],
        selected_option=selected,
        correct=correct,
        points=points,
        time_remaining=time_remaining,
    )
    question_ids = state.question_ids
    if next_question_id is not None and next_question_id not in question_ids:
        question_ids = [*question_ids, next_question_id]
    return state.model_copy(
        update={
            "phase": "revealing",
            "question_ids": question_ids,
            "selected_option": selected,
            "answers": [*state.answers, answer],
            "score": state.score + points,
            "is_timer_paused": True,
        }
    )


def game_reducer(state: GameState, action: GameAction) -> GameState:
    kind = action.type

    if kind == "START_GAME":
        question_ids = list(action.question_ids)
        total = max(action.total_questions or 0, len(question_ids))
        return GameState(
            phase="answering",
            session_id=action.session_id,
            question_ids=question_ids,
            total_questions=total,
        )

    if kind == "SELECT_ANSWER":
        if state.on_final_question:
            # the final question asks for confirmation and allows changing the pick
            if state.phase not in ("answering", "selected"):
                return state
            return state.model_copy(update={"phase": "selected", "selected_option": action.option_index})
        if state.phase != "answering":
            return state
        return state.model_copy(
            update={"phase": "locked", "selected_option": action.option_index, "is_timer_paused": True}
        )

    if kind == "LOCK_ANSWER":
        if state.phase != "selected" or state.selected_option is None:
            return state
        return state.model_copy(update={"phase": "locked", "is_timer_paused": True})

    if kind == "REVEAL_ANSWER":
        if state.phase != "locked" or state.current_index >= len(state.question_ids):
            return state
        return _record(
            state, state.selected_option, action.correct, action.points, action.time_remaining, action.next_question_id
        )

    if kind == "TIMEOUT":
        if state.phase not in ("answering", "selected") or state.current_index >= len(state.question_ids):
            return state
        return _record(state, None, False, action.points, action.time_remaining, action.next_question_id)

    if kind == "NEXT_QUESTION":
        if state.phase == "wager-locked":
            if state.final_index >= len(state.question_ids):
                return state
            return state.model_copy(
                update={
                    "phase": "answering",
                    "current_index": state.final_index,
                    "selected_option": None,
                    "is_timer_paused": False,
                }
            )
        if state.phase != "revealing":
            return state
        next_index = state.current_index + 1
        if next_index > state.final_index:
            return state.model_copy(update={"phase": "complete"})
        if next_index >= len(state.question_ids):
            # the server has not handed out the next question yet
            return state
        if next_index == state.final_index:
            return state.model_copy(update={"phase": "final-announcement", "selected_option": None})
        return state.model_copy(
            update={
                "phase": "answering",
                "current_index": next_index,
                "selected_option": None,
                "is_timer_paused": False,
            }
        )

    if kind == "START_WAGER":
        if state.phase != "final-announcement":
            return state
        return state.model_copy(update={"phase": "wagering", "wager": 0})

    if kind == "SET_WAGER":
        if state.phase != "wagering":
            return state
        return state.model_copy(update={"wager": clamp_wager(action.amount, state.score)})

    if kind == "LOCK_WAGER":
        if state.phase != "wagering":
            return state
        return state.model_copy(update={"phase": "wager-locked", "wager": clamp_wager(state.wager, state.score)})

    if kind == "QUIT_GAME":
        return INITIAL_STATE

    return state

from typing import Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, Field
from datetime import datetime

from .utils import utcnow

ANONYMOUS_USER = "anonymous"

UserId = Union[int, str]


class LearningContent(BaseModel):
    topic: str = ""
    paragraphs: List[str] = Field(default_factory=list)
    corrections: Dict[str, str] = Field(default_factory=dict)
    source: Optional[Dict[str, str]] = None


class Question(BaseModel):
    id: str
    text: str
    options: List[str]
    correct_answer: int
    explanation: str = ""
    # Kept as a plain string: unknown values must survive a round trip.
    difficulty: str = "medium"
    topic: str = ""
    topic_category: str = ""
    learning_content: Optional[LearningContent] = None


class CollectionMeta(BaseModel):
    id: str
    name: str
    slug: str


class Answer(BaseModel):
    question_id: str
    selected_option: Optional[int]  # None means the timer ran out
    time_remaining: float
    is_correct: bool
    base_points: int
    speed_bonus: int
    total_points: int
    response_time: float
    flagged: bool = False  # server-internal, stripped before leaving the service
    wager: Optional[int] = None

    def public(self) -> dict:
        return self.model_dump(exclude={"flagged"})


class AdaptiveState(BaseModel):
    candidate_pools: Dict[str, List[Question]] = Field(default_factory=dict)
    correct_count: int = 0
    used_question_ids: List[str] = Field(default_factory=list)


# Modes: classic (fixed question list) | adaptive (questions appended as the round goes)
class Session(BaseModel):
    session_id: str
    user_id: UserId = ANONYMOUS_USER
    mode: Literal["classic", "adaptive"] = "classic"
    questions: List[Question] = Field(default_factory=list)
    answers: List[Answer] = Field(default_factory=list)
    round_length: int = 10
    collection: Optional[CollectionMeta] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_time: datetime = Field(default_factory=utcnow)
    progression_awarded: bool = False
    plausibility_flags: int = 0
    adaptive_state: Optional[AdaptiveState] = None
    completed: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user_id != ANONYMOUS_USER

    @property
    def final_index(self) -> int:
        return self.round_length - 1

    @property
    def total_score(self) -> int:
        return sum(a.total_points for a in self.answers)

    def locate(self, question_id: str) -> Optional[Tuple[int, Question]]:
        for idx, q in enumerate(self.questions):
            if q.id == question_id:
                return idx, q
        return None

    def answer_for(self, question_id: str) -> Optional[Answer]:
        for a in self.answers:
            if a.question_id == question_id:
                return a
        return None


class FastestAnswer(BaseModel):
    question_index: int
    response_time: float
    points: int


class WagerResult(BaseModel):
    wager_amount: int
    won: bool
    points_change: int


class SessionResults(BaseModel):
    answers: List[Answer]
    total_score: int
    total_base_points: int
    total_speed_bonus: int
    total_correct: int
    total_questions: int
    fastest_answer: Optional[FastestAnswer] = None
    wager_result: Optional[WagerResult] = None

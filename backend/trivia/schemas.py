from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Literal, Optional
from .models import CollectionMeta, LearningContent, Question


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSessionIn(ApiModel):
    collection_id: Optional[str] = None
    mode: Literal["classic", "adaptive"] = "classic"


class AnswerIn(ApiModel):
    session_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)
    selected_option: Optional[int] = Field(default=None, ge=0, le=3)
    time_remaining: float = Field(ge=0)
    # sign is checked by the session manager so it can report InvalidWager
    wager: Optional[int] = None


class PublicQuestion(ApiModel):
    id: str
    text: str
    options: List[str]
    difficulty: str
    topic: str
    topic_category: str

    @classmethod
    def from_question(cls, q: Question) -> "PublicQuestion":
        return cls(
            id=q.id,
            text=q.text,
            options=q.options,
            difficulty=q.difficulty,
            topic=q.topic,
            topic_category=q.topic_category,
        )


class SessionOut(ApiModel):
    session_id: str
    mode: str
    questions: List[PublicQuestion]
    total_questions: int
    collection: Optional[CollectionMeta] = None
    degraded: bool


class SessionStateOut(SessionOut):
    answered: int
    total_score: int


class AnswerOut(ApiModel):
    question_id: str
    selected_option: Optional[int]
    time_remaining: float
    base_points: int
    speed_bonus: int
    total_points: int
    response_time: float
    wager: Optional[int] = None
    correct: bool
    correct_answer: int
    explanation: str
    learning_content: Optional[LearningContent] = None
    next_question: Optional[PublicQuestion] = None
    degraded: bool


class PublicAnswer(ApiModel):
    question_id: str
    selected_option: Optional[int]
    time_remaining: float
    is_correct: bool
    base_points: int
    speed_bonus: int
    total_points: int
    response_time: float
    wager: Optional[int] = None


class FastestAnswerOut(ApiModel):
    question_index: int
    response_time: float
    points: int


class WagerResultOut(ApiModel):
    wager_amount: int
    won: bool
    points_change: int


class ProgressionOut(ApiModel):
    xp_earned: int
    gems_earned: int


class ResultsOut(ApiModel):
    answers: List[PublicAnswer]
    total_score: int
    total_base_points: int
    total_speed_bonus: int
    total_correct: int
    total_questions: int
    fastest_answer: Optional[FastestAnswerOut] = None
    wager_result: Optional[WagerResultOut] = None
    progression: Optional[ProgressionOut] = None
    degraded: bool


class HealthOut(ApiModel):
    status: Literal["ok", "degraded"]
    storage: str
    sessions: int

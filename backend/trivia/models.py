from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

QuestionId = Union[int, str]


class Topic(str, Enum):
    GENERAL = "general"
    MATH = "math"
    SCIENCE = "science"


class PublicQuestion(BaseModel):
    """What a client is allowed to see before answering."""

    model_config = ConfigDict(frozen=True)

    id: QuestionId
    question: str
    options: List[str]


class Question(PublicQuestion):
    correct_index: int
    explanation: Optional[str] = None

    @model_validator(mode="after")
    def _check_bounds(self):
        if not 2 <= len(self.options) <= 6:
            raise ValueError(f"question {self.id!r} needs 2-6 options, got {len(self.options)}")
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(f"question {self.id!r} has correct_index out of range")
        return self

    def public(self) -> PublicQuestion:
        return PublicQuestion(id=self.id, question=self.question, options=list(self.options))


class AnswerResult(BaseModel):
    correct: bool
    correct_index: int
    explanation: str


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, max_length=50)
    score: int = Field(ge=0)
    timestamp: float  # epoch seconds
    seq: int  # insertion order, breaks ties between equal timestamps

    def sort_key(self):
        return (-self.score, self.timestamp, self.seq)


class RankedEntry(BaseModel):
    rank: int
    name: str
    score: int
    timestamp: float

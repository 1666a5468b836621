from typing import Any, List

from pydantic import BaseModel

from .models import QuestionId

# Request fields stay loosely typed; the services validate them so malformed
# input surfaces as a 400 with an ``error`` message.


class CheckAnswerIn(BaseModel):
    questionId: Any = None
    selectedAnswer: Any = None
    topic: Any = None


class ScoreIn(BaseModel):
    name: Any = None
    score: Any = None


class QuestionOut(BaseModel):
    id: QuestionId
    question: str
    options: List[str]


class CheckAnswerOut(BaseModel):
    correct: bool
    correctAnswer: int
    explanation: str


class ExplanationOut(BaseModel):
    explanation: str
    source: str


class LeaderboardRowOut(BaseModel):
    rank: int
    name: str
    score: int
    timestamp: str


class LeaderboardCountOut(BaseModel):
    count: int


class SuccessOut(BaseModel):
    success: bool = True


class HealthOut(BaseModel):
    status: str
    timestamp: str

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, constr
from typing import List, Optional
from medquiz.core.auth import TokenData, get_current_user, get_optional_user
from medquiz.core.database import Database, get_database
from medquiz.services.grading import QuizGrader

router = APIRouter()

class AnswerIn(BaseModel):
    # clients may also send is_correct; it is dropped, grading is server-side only
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    question_id: constr(min_length=1) = Field(alias="questionId")
    selected_answer_index: int = Field(alias="selectedAnswerIndex")

class QuizSubmission(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    lecture_id: constr(min_length=1) = Field(alias="lectureId")
    answers: List[AnswerIn] = Field(min_length=1)

class GradedDetail(BaseModel):
    question_id: str
    selected_answer_index: int
    is_correct: bool

class QuizScore(BaseModel):
    score: int
    total: int
    percentage: int
    graded_details: List[GradedDetail]

class QuizSubmitted(BaseModel):
    success: bool = True
    results: QuizScore

class CheckAnswer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    question_id: constr(min_length=1) = Field(alias="questionId")
    selected_answer_index: int = Field(alias="selectedAnswerIndex")
    lecture_id: Optional[str] = Field(default=None, alias="lectureId")

class CheckAnswerResult(BaseModel):
    success: bool = True
    is_correct: bool
    correct_answer_index: int
    explanation: Optional[str] = None

def get_grader(db: Database = Depends(get_database)) -> QuizGrader:
    return QuizGrader(db)

@router.post("/quiz-results", response_model=QuizSubmitted, status_code=201)
async def submit_quiz(payload: QuizSubmission, user: TokenData = Depends(get_current_user), grader: QuizGrader = Depends(get_grader)):
    result = await grader.submit(
        user.sub, payload.lecture_id, [(a.question_id, a.selected_answer_index) for a in payload.answers]
    )
    details = [GradedDetail(question_id=a.question_id, selected_answer_index=a.selected_answer_index, is_correct=a.is_correct)
               for a in result.answers]
    return QuizSubmitted(results=QuizScore(score=result.score, total=result.total, percentage=result.percentage, graded_details=details))

@router.post("/practice/check-answer", response_model=CheckAnswerResult)
async def check_answer(payload: CheckAnswer, user: Optional[TokenData] = Depends(get_optional_user), grader: QuizGrader = Depends(get_grader)):
    return await grader.check_answer(
        payload.question_id, payload.selected_answer_index,
        user_id=user.sub if user else None, lecture_identifier=payload.lecture_id,
    )

@router.get("/student/performance")
async def performance(user: TokenData = Depends(get_current_user), grader: QuizGrader = Depends(get_grader)):
    return await grader.performance(user.sub)

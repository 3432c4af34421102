from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import SQLModel

from ..db import get_session
from ..models import Quiz, QuizSubmission, RoleEnum
from ..schemas import MessageResponse
from ..security import require_roles
from ..services.quiz_submissions import QuizSubmissionService
from ..utils.ids import parse_uuid
from ..utils.lms_access import (
    course_id_for_content,
    ensure_content_access,
    ensure_course_staff,
    ensure_submission_owner,
)

router = APIRouter(prefix="/quizzes", tags=["quizzes"])


class QuizSubmissionCreate(SQLModel):
    answers: Optional[List[Dict[str, Any]]] = None
    time_spent: Optional[int] = None


class QuizSubmissionUpdate(SQLModel):
    answers: Optional[List[Dict[str, Any]]] = None
    time_spent: Optional[int] = None


class ReturnRequest(SQLModel):
    feedback: Optional[str] = None


def _get_quiz(session, quiz_id: str) -> Quiz:
    quiz = session.get(Quiz, parse_uuid(quiz_id, "quiz ID"))
    if not quiz or quiz.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quiz not found")
    return quiz


def _load_submission(session, user, quiz_id: str, submission_id: str) -> QuizSubmission:
    quiz = _get_quiz(session, quiz_id)
    submission = QuizSubmissionService(session).find_by_id(submission_id)
    if submission.quiz_id != quiz.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quiz submission not found")
    if user.role == RoleEnum.student.value:
        ensure_submission_owner(user, submission.student_id)
    else:
        ensure_course_staff(session, user, course_id_for_content(session, quiz.module_content_id))
    return submission


@router.post("/{quiz_id}", response_model=QuizSubmission, status_code=status.HTTP_201_CREATED)
def start_quiz(
    quiz_id: str,
    payload: QuizSubmissionCreate,
    session=Depends(get_session),
    user=Depends(require_roles("student")),
):
    quiz = _get_quiz(session, quiz_id)
    ensure_content_access(session, user, quiz.module_content_id)
    return QuizSubmissionService(session).create(quiz.id, user.id, payload.model_dump(exclude_unset=True))


@router.get("/{quiz_id}/submissions", response_model=List[QuizSubmission])
def list_submissions(
    quiz_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor", "student")),
):
    quiz = _get_quiz(session, quiz_id)
    service = QuizSubmissionService(session)
    if user.role == RoleEnum.student.value:
        return service.find_by_quiz_and_student(quiz.id, user.id)
    ensure_course_staff(session, user, course_id_for_content(session, quiz.module_content_id))
    return service.find_by_quiz(quiz.id)


@router.get("/{quiz_id}/submission/{submission_id}", response_model=QuizSubmission)
def get_submission(
    quiz_id: str,
    submission_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor", "student")),
):
    return _load_submission(session, user, quiz_id, submission_id)


@router.put("/{quiz_id}/submission/{submission_id}", response_model=QuizSubmission)
def update_submission(
    quiz_id: str,
    submission_id: str,
    payload: QuizSubmissionUpdate,
    session=Depends(get_session),
    user=Depends(require_roles("student")),
):
    submission = _load_submission(session, user, quiz_id, submission_id)
    return QuizSubmissionService(session).update(submission.id, payload.model_dump(exclude_unset=True))


@router.delete("/{quiz_id}/submission/{submission_id}", response_model=MessageResponse)
def delete_submission(
    quiz_id: str,
    submission_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "student")),
):
    submission = _load_submission(session, user, quiz_id, submission_id)
    return QuizSubmissionService(session).remove(submission.id)


@router.post("/{quiz_id}/submission/{submission_id}/finalize", response_model=QuizSubmission)
def finalize_submission(
    quiz_id: str,
    submission_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("student")),
):
    submission = _load_submission(session, user, quiz_id, submission_id)
    return QuizSubmissionService(session).finalize(submission.id)


@router.patch("/{quiz_id}/submission/{submission_id}/return", response_model=QuizSubmission)
def return_submission(
    quiz_id: str,
    submission_id: str,
    payload: ReturnRequest,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor")),
):
    submission = _load_submission(session, user, quiz_id, submission_id)
    return QuizSubmissionService(session).return_for_revision(submission.id, payload.feedback)


@router.patch("/{quiz_id}/submission/{submission_id}/resubmit", response_model=QuizSubmission)
def resubmit_submission(
    quiz_id: str,
    submission_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("student")),
):
    submission = _load_submission(session, user, quiz_id, submission_id)
    return QuizSubmissionService(session).start_resubmission(submission.id)

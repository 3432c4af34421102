from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import SQLModel

from ..db import get_session
from ..models import Assignment, AssignmentSubmission, RoleEnum
from ..schemas import MessageResponse
from ..security import require_roles
from ..services.assignment_submissions import AssignmentSubmissionService
from ..utils.ids import parse_uuid
from ..utils.lms_access import (
    course_id_for_content,
    ensure_content_access,
    ensure_course_staff,
    ensure_submission_owner,
)

router = APIRouter(prefix="/assignments", tags=["assignments"])


class SubmissionCreate(SQLModel):
    content: Optional[Any] = None
    attachments: Optional[List[Dict[str, Any]]] = None
    # {"group_id": ..., "member_ids": [...]} for group assignments
    group_snapshot: Optional[Dict[str, Any]] = None


class SubmissionUpdate(SQLModel):
    content: Optional[Any] = None
    attachments: Optional[List[Dict[str, Any]]] = None
    group_snapshot: Optional[Dict[str, Any]] = None


class ReturnRequest(SQLModel):
    feedback: Optional[str] = None


def _get_assignment(session, assignment_id: str) -> Assignment:
    assignment = session.get(Assignment, parse_uuid(assignment_id, "assignment ID"))
    if not assignment or assignment.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assignment not found")
    return assignment


def _load_submission(session, user, assignment_id: str, submission_id: str) -> AssignmentSubmission:
    assignment = _get_assignment(session, assignment_id)
    submission = AssignmentSubmissionService(session).find_by_id(submission_id)
    if submission.assignment_id != assignment.id or submission.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assignment submission not found")
    if user.role == RoleEnum.student.value:
        ensure_submission_owner(user, submission.student_id)
    else:
        ensure_course_staff(session, user, course_id_for_content(session, assignment.module_content_id))
    return submission


@router.post("/{assignment_id}/submit", response_model=AssignmentSubmission, status_code=status.HTTP_201_CREATED)
def submit_assignment(
    assignment_id: str,
    payload: SubmissionCreate,
    session=Depends(get_session),
    user=Depends(require_roles("student")),
):
    assignment = _get_assignment(session, assignment_id)
    # Unpublished assignments do not exist for students
    ensure_content_access(session, user, assignment.module_content_id)
    return AssignmentSubmissionService(session).create(assignment.id, user.id, payload.model_dump(exclude_unset=True))


@router.get("/{assignment_id}/submissions", response_model=List[AssignmentSubmission])
def list_submissions(
    assignment_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor", "student")),
):
    assignment = _get_assignment(session, assignment_id)
    service = AssignmentSubmissionService(session)
    if user.role == RoleEnum.student.value:
        return service.find_by_assignment_and_student(assignment.id, user.id)
    ensure_course_staff(session, user, course_id_for_content(session, assignment.module_content_id))
    return service.find_by_assignment(assignment.id)


@router.get("/{assignment_id}/submission/{submission_id}", response_model=AssignmentSubmission)
def get_submission(
    assignment_id: str,
    submission_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor", "student")),
):
    return _load_submission(session, user, assignment_id, submission_id)


@router.put("/{assignment_id}/submission/{submission_id}", response_model=AssignmentSubmission)
def update_submission(
    assignment_id: str,
    submission_id: str,
    payload: SubmissionUpdate,
    session=Depends(get_session),
    user=Depends(require_roles("student")),
):
    submission = _load_submission(session, user, assignment_id, submission_id)
    return AssignmentSubmissionService(session).update(submission.id, payload.model_dump(exclude_unset=True))


@router.delete("/{assignment_id}/submission/{submission_id}", response_model=MessageResponse)
def delete_submission(
    assignment_id: str,
    submission_id: str,
    direct_delete: bool = False,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "student")),
):
    submission = _load_submission(session, user, assignment_id, submission_id)
    return AssignmentSubmissionService(session).remove(submission.id, direct_delete)


@router.post("/{assignment_id}/submission/{submission_id}/finalize", response_model=AssignmentSubmission)
def finalize_submission(
    assignment_id: str,
    submission_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("student")),
):
    submission = _load_submission(session, user, assignment_id, submission_id)
    return AssignmentSubmissionService(session).finalize(submission.id)


@router.patch("/{assignment_id}/submission/{submission_id}/return", response_model=AssignmentSubmission)
def return_submission(
    assignment_id: str,
    submission_id: str,
    payload: ReturnRequest,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor")),
):
    submission = _load_submission(session, user, assignment_id, submission_id)
    return AssignmentSubmissionService(session).return_for_revision(submission.id, payload.feedback)


@router.patch("/{assignment_id}/submission/{submission_id}/resubmit", response_model=AssignmentSubmission)
def resubmit_submission(
    assignment_id: str,
    submission_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("student")),
):
    submission = _load_submission(session, user, assignment_id, submission_id)
    return AssignmentSubmissionService(session).start_resubmission(submission.id)

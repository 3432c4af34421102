from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlmodel import Session, select

from ..models import (
    Assignment,
    AssignmentModeEnum,
    AssignmentSubmission,
    SubmissionStateEnum,
    utcnow,
)
from ..utils.db_errors import DbErrorCode, db_error
from ..utils.ids import parse_uuid
from ..utils.lms_access import course_id_for_content, is_enrolled
from ..utils.log import log
from ..utils.sqlmodel_helpers import apply_partial_update
from .submission_rules import ensure_attempts_left, late_days_for


_EDITABLE_FIELDS = ("content", "attachments", "group_snapshot")


class AssignmentSubmissionService:
    def __init__(self, session: Session):
        self.session = session

    def _get(self, submission_id) -> AssignmentSubmission:
        submission_uuid = parse_uuid(submission_id, "submission ID")
        return self.session.exec(
            select(AssignmentSubmission).where(
                AssignmentSubmission.id == submission_uuid,
                AssignmentSubmission.deleted_at.is_(None),
            )
        ).one()

    def _get_assignment(self, assignment_id: UUID) -> Assignment:
        assignment = self.session.get(Assignment, assignment_id)
        if not assignment or assignment.deleted_at is not None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assignment not found")
        return assignment

    def _used_attempts(self, assignment_id: UUID, student_id: int, exclude_id: Optional[UUID] = None) -> int:
        stmt = select(func.count()).select_from(AssignmentSubmission).where(
            AssignmentSubmission.assignment_id == assignment_id,
            AssignmentSubmission.student_id == student_id,
            AssignmentSubmission.state != SubmissionStateEnum.draft,
            AssignmentSubmission.deleted_at.is_(None),
        )
        if exclude_id is not None:
            stmt = stmt.where(AssignmentSubmission.id != exclude_id)
        return self.session.exec(stmt).one()

    def _validate_group(self, assignment: Assignment, student_id: int, snapshot: Optional[Dict[str, Any]]) -> None:
        if snapshot:
            if assignment.mode != AssignmentModeEnum.group:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="This assignment does not allow group submissions",
                )
            if student_id not in (snapshot.get("member_ids") or []):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Student is not a member of the submitted group",
                )
        elif assignment.mode == AssignmentModeEnum.group:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="This assignment requires group submission",
            )

    @log(
        args_message=lambda a: (
            f"Creating assignment submission for assignment {a['assignment_id']} and student {a['student_id']}"
        ),
        success_message=lambda r, a: f"Assignment submission [{r.id}] successfully created.",
        error_message=lambda e, a: (
            f"Error creating assignment submission for assignment {a['assignment_id']} "
            f"and student {a['student_id']}: {e}"
        ),
    )
    @db_error({DbErrorCode.UNIQUE_CONSTRAINT: "Submission already exists for this assignment and student."})
    def create(self, assignment_id, student_id: int, dto: Dict[str, Any]) -> AssignmentSubmission:
        assignment_uuid = parse_uuid(assignment_id, "assignment ID")
        assignment = self._get_assignment(assignment_uuid)

        course_id = course_id_for_content(self.session, assignment.module_content_id)
        if course_id is None or not is_enrolled(self.session, student_id, course_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Student is not enrolled in this course")

        self._validate_group(assignment, student_id, dto.get("group_snapshot"))

        attempt_number = self._used_attempts(assignment.id, student_id) + 1
        # A soft-deleted draft still holds the attempt slot
        stale = self.session.exec(
            select(AssignmentSubmission).where(
                AssignmentSubmission.assignment_id == assignment.id,
                AssignmentSubmission.student_id == student_id,
                AssignmentSubmission.attempt_number == attempt_number,
                AssignmentSubmission.deleted_at.is_not(None),
            )
        ).first()
        if stale is not None:
            self.session.delete(stale)
            self.session.flush()

        submission = AssignmentSubmission(
            assignment_id=assignment.id,
            student_id=student_id,
            state=SubmissionStateEnum.draft,
            content=dto.get("content"),
            attachments=dto.get("attachments") or [],
            group_snapshot=dto.get("group_snapshot"),
            attempt_number=attempt_number,
        )
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    @log(
        args_message=lambda a: f"Updating assignment submission {a['submission_id']}",
        success_message=lambda r, a: f"Assignment submission [{r.id}] successfully updated.",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Assignment submission not found"})
    def update(self, submission_id, dto: Dict[str, Any]) -> AssignmentSubmission:
        submission = self._get(submission_id)
        if submission.state == SubmissionStateEnum.graded:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot modify graded submission")
        if submission.state != SubmissionStateEnum.draft:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Can only modify draft submissions")

        changes = {key: value for key, value in dto.items() if key in _EDITABLE_FIELDS}
        if "group_snapshot" in changes:
            assignment = self._get_assignment(submission.assignment_id)
            self._validate_group(assignment, submission.student_id, changes["group_snapshot"])
        if "attachments" in changes and changes["attachments"] is None:
            changes["attachments"] = []
        apply_partial_update(submission, changes)
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    @log(
        args_message=lambda a: f"Finalizing assignment submission {a['submission_id']}",
        success_message=lambda r, a: f"Assignment submission [{r.id}] successfully finalized.",
        error_message=lambda e, a: f"Error finalizing assignment submission {a['submission_id']}: {e}",
    )
    @db_error(
        {
            DbErrorCode.RECORD_NOT_FOUND: "Assignment submission not found",
            DbErrorCode.UNIQUE_CONSTRAINT: "Submission already exists for this assignment and student.",
        }
    )
    def finalize(self, submission_id) -> AssignmentSubmission:
        submission = self._get(submission_id)
        if submission.state != SubmissionStateEnum.draft:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Only draft submissions can be finalized")
        if not submission.content and not submission.attachments:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Submission must have content or attachments",
            )

        assignment = self._get_assignment(submission.assignment_id)
        used = self._used_attempts(submission.assignment_id, submission.student_id, exclude_id=submission.id)
        ensure_attempts_left(used, assignment.max_attempts)

        now = utcnow()
        submission.late_days = late_days_for(
            assignment.due_date, assignment.allow_late_submission, now, "assignment"
        )
        submission.state = SubmissionStateEnum.submitted
        submission.submitted_at = now
        submission.updated_at = now
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    @log(
        args_message=lambda a: f"Returning assignment submission {a['submission_id']} for revision",
        success_message=lambda r, a: f"Assignment submission [{r.id}] returned for revision.",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Assignment submission not found"})
    def return_for_revision(self, submission_id, feedback: Optional[str] = None) -> AssignmentSubmission:
        submission = self._get(submission_id)
        if submission.state not in (SubmissionStateEnum.submitted, SubmissionStateEnum.graded):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Only submitted or graded submissions can be returned",
            )
        now = utcnow()
        submission.state = SubmissionStateEnum.returned
        submission.feedback = feedback
        submission.returned_at = now
        submission.updated_at = now
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    @log(
        args_message=lambda a: f"Starting resubmission of assignment submission {a['submission_id']}",
        success_message=lambda r, a: f"Assignment submission [{r.id}] reopened as draft.",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Assignment submission not found"})
    def start_resubmission(self, submission_id) -> AssignmentSubmission:
        submission = self._get(submission_id)
        if submission.state != SubmissionStateEnum.returned:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Only returned submissions can be resubmitted",
            )
        assignment = self._get_assignment(submission.assignment_id)
        if not assignment.allow_resubmission:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Resubmission is not allowed for this assignment",
            )
        submission.state = SubmissionStateEnum.draft
        submission.submitted_at = None
        submission.updated_at = utcnow()
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    @log(args_message=lambda a: f"Fetching assignment submission {a['submission_id']}", success_message=False)
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Assignment submission not found"})
    def find_by_id(self, submission_id) -> AssignmentSubmission:
        return self._get(submission_id)

    def _ordered(self, stmt) -> List[AssignmentSubmission]:
        stmt = stmt.where(AssignmentSubmission.deleted_at.is_(None)).order_by(
            AssignmentSubmission.submitted_at.desc(), AssignmentSubmission.created_at.desc()
        )
        return list(self.session.exec(stmt).all())

    @log(
        args_message=lambda a: (
            f"Fetching assignment submissions for assignment {a['assignment_id']} and student {a['student_id']}"
        ),
        success_message=lambda r, a: f"Fetched {len(r)} assignment submissions.",
    )
    def find_by_assignment_and_student(self, assignment_id, student_id: int) -> List[AssignmentSubmission]:
        assignment_uuid = parse_uuid(assignment_id, "assignment ID")
        return self._ordered(
            select(AssignmentSubmission).where(
                AssignmentSubmission.assignment_id == assignment_uuid,
                AssignmentSubmission.student_id == student_id,
            )
        )

    @log(
        args_message=lambda a: f"Fetching all submissions for assignment {a['assignment_id']}",
        success_message=lambda r, a: f"Fetched {len(r)} submissions for assignment.",
    )
    def find_by_assignment(self, assignment_id) -> List[AssignmentSubmission]:
        assignment_uuid = parse_uuid(assignment_id, "assignment ID")
        return self._ordered(select(AssignmentSubmission).where(AssignmentSubmission.assignment_id == assignment_uuid))

    @log(
        args_message=lambda a: f"Fetching all assignment submissions for student {a['student_id']}",
        success_message=lambda r, a: f"Fetched {len(r)} assignment submissions for student.",
    )
    def find_by_student(self, student_id: int) -> List[AssignmentSubmission]:
        return self._ordered(select(AssignmentSubmission).where(AssignmentSubmission.student_id == student_id))

    @log(
        args_message=lambda a: (
            f"Removing assignment submission {a['submission_id']} with direct_delete={a['direct_delete']}"
        ),
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Assignment submission not found"})
    def remove(self, submission_id, direct_delete: bool = False) -> Dict[str, str]:
        submission = self._get(submission_id)
        if submission.state == SubmissionStateEnum.graded:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot delete graded submission")
        if submission.state != SubmissionStateEnum.draft:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Can only delete draft submissions")

        if direct_delete:
            self.session.delete(submission)
            message = "Assignment submission permanently deleted"
        else:
            submission.deleted_at = utcnow()
            self.session.add(submission)
            message = "Assignment submission soft-deleted"
        self.session.commit()
        return {"message": message}

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlmodel import Session, select

from ..models import (
    GradeRecord,
    Quiz,
    QuizSubmission,
    SubmissionStateEnum,
    utcnow,
)
from ..utils.db_errors import DbErrorCode, db_error
from ..utils.ids import parse_uuid
from ..utils.lms_access import course_id_for_content, is_enrolled
from ..utils.log import log
from ..utils.sqlmodel_helpers import apply_partial_update
from .quiz_grading import auto_grade
from .submission_rules import ensure_attempts_left, final_score_for, late_days_for, letter_grade


_EDITABLE_FIELDS = ("answers", "time_spent")


class QuizSubmissionService:
    def __init__(self, session: Session):
        self.session = session

    def _get(self, submission_id) -> QuizSubmission:
        submission_uuid = parse_uuid(submission_id, "submission ID")
        return self.session.exec(select(QuizSubmission).where(QuizSubmission.id == submission_uuid)).one()

    def _get_quiz(self, quiz_id: UUID) -> Quiz:
        quiz = self.session.get(Quiz, quiz_id)
        if not quiz or quiz.deleted_at is not None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quiz not found")
        return quiz

    def _used_attempts(self, quiz_id: UUID, student_id: int, exclude_id: Optional[UUID] = None) -> int:
        stmt = select(func.count()).select_from(QuizSubmission).where(
            QuizSubmission.quiz_id == quiz_id,
            QuizSubmission.student_id == student_id,
            QuizSubmission.state != SubmissionStateEnum.draft,
        )
        if exclude_id is not None:
            stmt = stmt.where(QuizSubmission.id != exclude_id)
        return self.session.exec(stmt).one()

    def _record_grade(self, submission: QuizSubmission) -> None:
        record = self.session.exec(
            select(GradeRecord).where(GradeRecord.quiz_submission_id == submission.id)
        ).first()
        if record is None:
            record = GradeRecord(
                student_id=submission.student_id,
                quiz_submission_id=submission.id,
                raw_score=submission.raw_score,
                final_score=submission.final_score,
                grade=submission.grade,
            )
        else:
            record.raw_score = submission.raw_score
            record.final_score = submission.final_score
            record.grade = submission.grade
            record.graded_at = submission.graded_at
            record.updated_at = utcnow()
        self.session.add(record)

    @log(
        args_message=lambda a: f"Creating quiz submission for quiz {a['quiz_id']} and student {a['student_id']}",
        success_message=lambda r, a: f"Quiz submission [{r.id}] successfully created.",
        error_message=lambda e, a: (
            f"Error creating quiz submission for quiz {a['quiz_id']} and student {a['student_id']}: {e}"
        ),
    )
    @db_error({DbErrorCode.UNIQUE_CONSTRAINT: "Submission already exists for this quiz and student."})
    def create(self, quiz_id, student_id: int, dto: Dict[str, Any]) -> QuizSubmission:
        quiz_uuid = parse_uuid(quiz_id, "quiz ID")
        quiz = self._get_quiz(quiz_uuid)

        course_id = course_id_for_content(self.session, quiz.module_content_id)
        if course_id is None or not is_enrolled(self.session, student_id, course_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Student is not enrolled in this course")

        submission = QuizSubmission(
            quiz_id=quiz.id,
            student_id=student_id,
            state=SubmissionStateEnum.draft,
            answers=dto.get("answers") or [],
            time_spent=dto.get("time_spent"),
            attempt_number=self._used_attempts(quiz.id, student_id) + 1,
        )
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    @log(
        args_message=lambda a: f"Updating quiz submission {a['submission_id']}",
        success_message=lambda r, a: f"Quiz submission [{r.id}] successfully updated.",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Quiz submission not found"})
    def update(self, submission_id, dto: Dict[str, Any]) -> QuizSubmission:
        submission = self._get(submission_id)
        if submission.graded_at is not None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot modify graded quiz submission")
        if submission.state != SubmissionStateEnum.draft:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Can only modify draft quiz submissions")

        changes = {key: value for key, value in dto.items() if key in _EDITABLE_FIELDS}
        if "answers" in changes and changes["answers"] is None:
            changes["answers"] = []
        apply_partial_update(submission, changes)
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    @log(
        args_message=lambda a: f"Finalizing quiz submission {a['submission_id']}",
        success_message=lambda r, a: f"Quiz submission [{r.id}] finalized with raw score {r.raw_score}.",
        error_message=lambda e, a: f"Error finalizing quiz submission {a['submission_id']}: {e}",
    )
    @db_error(
        {
            DbErrorCode.RECORD_NOT_FOUND: "Quiz submission not found",
            DbErrorCode.UNIQUE_CONSTRAINT: "Submission already exists for this quiz and student.",
        }
    )
    def finalize(self, submission_id) -> QuizSubmission:
        submission = self._get(submission_id)
        if submission.state != SubmissionStateEnum.draft:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Only draft quiz submissions can be finalized",
            )
        if not submission.answers:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Quiz submission must have answers")

        quiz = self._get_quiz(submission.quiz_id)
        used = self._used_attempts(submission.quiz_id, submission.student_id, exclude_id=submission.id)
        ensure_attempts_left(used, quiz.max_attempts)

        now = utcnow()
        late_days = late_days_for(
            quiz.due_date, quiz.allow_late_submission, now, "quiz", grace_minutes=quiz.grace_period_minutes
        )
        result = auto_grade(quiz.questions or [], submission.answers)

        submission.late_days = late_days
        submission.submitted_at = now
        submission.raw_score = result["raw_score"]
        submission.question_results = result["question_results"]
        submission.updated_at = now
        if result["needs_manual_review"]:
            submission.state = SubmissionStateEnum.submitted
        else:
            submission.state = SubmissionStateEnum.graded
            submission.final_score = final_score_for(result["raw_score"], late_days, quiz.late_penalty)
            submission.grade = letter_grade(submission.final_score)
            submission.graded_at = now
            self._record_grade(submission)

        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    @log(
        args_message=lambda a: f"Returning quiz submission {a['submission_id']} for revision",
        success_message=lambda r, a: f"Quiz submission [{r.id}] returned for revision.",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Quiz submission not found"})
    def return_for_revision(self, submission_id, feedback: Optional[str] = None) -> QuizSubmission:
        submission = self._get(submission_id)
        if submission.state not in (SubmissionStateEnum.submitted, SubmissionStateEnum.graded):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Only submitted or graded quiz submissions can be returned",
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
        args_message=lambda a: f"Starting resubmission of quiz submission {a['submission_id']}",
        success_message=lambda r, a: f"Quiz submission [{r.id}] reopened as draft.",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Quiz submission not found"})
    def start_resubmission(self, submission_id) -> QuizSubmission:
        submission = self._get(submission_id)
        if submission.state != SubmissionStateEnum.returned:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Only returned quiz submissions can be resubmitted",
            )
        quiz = self._get_quiz(submission.quiz_id)
        if not quiz.allow_resubmission:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Resubmission is not allowed for this quiz",
            )
        submission.state = SubmissionStateEnum.draft
        submission.submitted_at = None
        submission.graded_at = None
        submission.raw_score = None
        submission.final_score = None
        submission.grade = None
        submission.question_results = None
        submission.updated_at = utcnow()
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    @log(args_message=lambda a: f"Fetching quiz submission {a['submission_id']}", success_message=False)
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Quiz submission not found"})
    def find_by_id(self, submission_id) -> QuizSubmission:
        return self._get(submission_id)

    def _ordered(self, stmt) -> List[QuizSubmission]:
        stmt = stmt.order_by(QuizSubmission.submitted_at.desc(), QuizSubmission.created_at.desc())
        return list(self.session.exec(stmt).all())

    @log(
        args_message=lambda a: f"Fetching quiz submissions for quiz {a['quiz_id']} and student {a['student_id']}",
        success_message=lambda r, a: f"Fetched {len(r)} quiz submissions.",
    )
    def find_by_quiz_and_student(self, quiz_id, student_id: int) -> List[QuizSubmission]:
        quiz_uuid = parse_uuid(quiz_id, "quiz ID")
        return self._ordered(
            select(QuizSubmission).where(QuizSubmission.quiz_id == quiz_uuid, QuizSubmission.student_id == student_id)
        )

    @log(
        args_message=lambda a: f"Fetching all submissions for quiz {a['quiz_id']}",
        success_message=lambda r, a: f"Fetched {len(r)} submissions for quiz.",
    )
    def find_by_quiz(self, quiz_id) -> List[QuizSubmission]:
        quiz_uuid = parse_uuid(quiz_id, "quiz ID")
        return self._ordered(select(QuizSubmission).where(QuizSubmission.quiz_id == quiz_uuid))

    @log(
        args_message=lambda a: f"Fetching all quiz submissions for student {a['student_id']}",
        success_message=lambda r, a: f"Fetched {len(r)} quiz submissions for student.",
    )
    def find_by_student(self, student_id: int) -> List[QuizSubmission]:
        return self._ordered(select(QuizSubmission).where(QuizSubmission.student_id == student_id))

    @log(
        args_message=lambda a: f"Removing quiz submission {a['submission_id']}",
        success_message=lambda r, a: f"Quiz submission {a['submission_id']} hard deleted.",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Quiz submission not found"})
    def remove(self, submission_id) -> Dict[str, str]:
        submission = self._get(submission_id)
        if submission.graded_at is not None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot delete graded quiz submission")
        if submission.state != SubmissionStateEnum.draft:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Can only delete draft quiz submissions")
        # Quiz submissions have no soft-delete column
        self.session.delete(submission)
        self.session.commit()
        return {"message": "Quiz submission permanently deleted"}

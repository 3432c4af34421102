from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlmodel import Session, select

from ..models import (
    Assignment,
    AssignmentSubmission,
    ContentTypeEnum,
    CourseEnrollment,
    GradeRecord,
    Module,
    ModuleContent,
    Quiz,
    QuizSubmission,
    RoleEnum,
    SubmissionStateEnum,
    User,
    utcnow,
)
from ..utils.db_errors import DbErrorCode, db_error
from ..utils.ids import parse_uuid
from ..utils.lms_access import ensure_module_access
from ..utils.log import log
from .submission_rules import final_score_for, letter_grade


class GradingService:
    def __init__(self, session: Session):
        self.session = session

    @log(
        args_message=lambda a: f"Grading assignment submission {a['submission_id']} by grader {a['grader_id']}",
        success_message=lambda r, a: f"Grade record [{r.id}] created with final score {r.final_score}",
    )
    @db_error(
        {
            DbErrorCode.RECORD_NOT_FOUND: "Assignment submission not found",
            DbErrorCode.UNIQUE_CONSTRAINT: "A grade record already exists for this submission.",
        }
    )
    def grade_assignment_submission(
        self,
        submission_id,
        grader_id: Optional[int],
        raw_score: float,
        feedback: Optional[str] = None,
    ) -> GradeRecord:
        submission_uuid = parse_uuid(submission_id, "submission ID")
        submission = self.session.exec(
            select(AssignmentSubmission).where(
                AssignmentSubmission.id == submission_uuid,
                AssignmentSubmission.deleted_at.is_(None),
            )
        ).one()
        if submission.state != SubmissionStateEnum.submitted:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Can only grade submissions that have been submitted.",
            )
        assignment = self.session.get(Assignment, submission.assignment_id)

        final_score = final_score_for(raw_score, submission.late_days, assignment.late_penalty if assignment else None)
        now = utcnow()
        record = GradeRecord(
            student_id=submission.student_id,
            assignment_submission_id=submission.id,
            raw_score=raw_score,
            final_score=final_score,
            grade=letter_grade(final_score),
            feedback=feedback,
            graded_by=grader_id,
            graded_at=now,
        )
        submission.state = SubmissionStateEnum.graded
        submission.updated_at = now
        self.session.add(record)
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(record)
        return record

    @log(
        args_message=lambda a: f"Updating grade record {a['record_id']}",
        success_message=lambda r, a: f"Grade record [{r.id}] updated with final score {r.final_score}",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: "Grade record not found"})
    def update_grade_record(
        self,
        record_id,
        grader_id: Optional[int],
        raw_score: float,
        feedback: Optional[str] = None,
    ) -> GradeRecord:
        record_uuid = parse_uuid(record_id, "grade record ID")
        record = self.session.exec(select(GradeRecord).where(GradeRecord.id == record_uuid)).one()
        now = utcnow()

        late_days: Optional[int] = None
        late_penalty: Optional[float] = None
        if record.assignment_submission_id is not None:
            submission = self.session.get(AssignmentSubmission, record.assignment_submission_id)
            assignment = self.session.get(Assignment, submission.assignment_id)
            late_days, late_penalty = submission.late_days, assignment.late_penalty
        else:
            submission = self.session.get(QuizSubmission, record.quiz_submission_id)
            quiz = self.session.get(Quiz, submission.quiz_id)
            late_days, late_penalty = submission.late_days, quiz.late_penalty

        record.raw_score = raw_score
        record.final_score = final_score_for(raw_score, late_days, late_penalty)
        record.grade = letter_grade(record.final_score)
        record.feedback = feedback
        record.graded_by = grader_id
        record.graded_at = now
        record.updated_at = now

        submission.state = SubmissionStateEnum.graded
        submission.updated_at = now
        if isinstance(submission, QuizSubmission):
            submission.raw_score = record.raw_score
            submission.final_score = record.final_score
            submission.grade = record.grade
            submission.graded_at = now

        self.session.add(record)
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(record)
        return record

    def _gradable_items(self, module_id: UUID) -> List[Dict[str, Any]]:
        contents = self.session.exec(
            select(ModuleContent)
            .where(
                ModuleContent.module_id == module_id,
                ModuleContent.deleted_at.is_(None),
                ModuleContent.content_type.in_([ContentTypeEnum.assignment, ContentTypeEnum.quiz]),
            )
            .order_by(ModuleContent.order, ModuleContent.created_at)
        ).all()
        items: List[Dict[str, Any]] = []
        for content in contents:
            if content.content_type == ContentTypeEnum.assignment:
                payload = self.session.exec(
                    select(Assignment).where(Assignment.module_content_id == content.id)
                ).first()
                max_score = payload.max_score if payload else None
            else:
                payload = self.session.exec(select(Quiz).where(Quiz.module_content_id == content.id)).first()
                max_score = 100.0
            if payload is None or payload.deleted_at is not None:
                continue
            items.append(
                {
                    "id": payload.id,
                    "content_id": content.id,
                    "title": content.title,
                    "type": content.content_type.value,
                    "due_date": payload.due_date,
                    "max_score": max_score,
                }
            )
        return items

    def _latest_grade(self, item: Dict[str, Any], student_id: int) -> Optional[Dict[str, Any]]:
        if item["type"] == ContentTypeEnum.assignment.value:
            stmt = (
                select(GradeRecord, AssignmentSubmission)
                .join(AssignmentSubmission, GradeRecord.assignment_submission_id == AssignmentSubmission.id)
                .where(
                    AssignmentSubmission.assignment_id == item["id"],
                    AssignmentSubmission.student_id == student_id,
                )
            )
        else:
            stmt = (
                select(GradeRecord, QuizSubmission)
                .join(QuizSubmission, GradeRecord.quiz_submission_id == QuizSubmission.id)
                .where(QuizSubmission.quiz_id == item["id"], QuizSubmission.student_id == student_id)
            )
        row = self.session.exec(stmt.order_by(GradeRecord.graded_at.desc())).first()
        if row is None:
            return None
        record, submission = row
        return {
            "grade_record_id": record.id,
            "submission_id": submission.id,
            "state": submission.state.value,
            "raw_score": record.raw_score,
            "final_score": record.final_score,
            "grade": record.grade,
            "graded_at": record.graded_at,
        }

    @log(args_message=lambda a: f"Building gradebook for module {a['module_id']}", success_message=False)
    def get_gradebook(self, module_id, user) -> Dict[str, Any]:
        module_uuid = parse_uuid(module_id, "module ID")
        module: Module = ensure_module_access(self.session, user, module_uuid)
        items = self._gradable_items(module.id)

        if user.role == RoleEnum.student.value:
            students = [user]
        else:
            students = self.session.exec(
                select(User)
                .join(CourseEnrollment, CourseEnrollment.student_id == User.id)
                .where(CourseEnrollment.course_id == module.course_id)
                .order_by(User.full_name)
            ).all()

        rows = []
        for student in students:
            grades = {str(item["id"]): self._latest_grade(item, student.id) for item in items}
            rows.append(
                {
                    "student_id": student.id,
                    "full_name": student.full_name,
                    "email": student.email,
                    "grades": grades,
                }
            )
        return {"module_id": module.id, "module_title": module.title, "items": items, "students": rows}

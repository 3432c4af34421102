from io import BytesIO
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from ..db import get_session
from ..exporters import export_gradebook_excel, export_gradebook_pdf
from ..models import Assignment, AssignmentSubmission, GradeRecord, Quiz, QuizSubmission
from ..security import require_roles
from ..services.grading import GradingService
from ..utils.ids import parse_uuid
from ..utils.lms_access import course_id_for_content, ensure_course_staff


router = APIRouter(prefix="/grading", tags=["grading"])

_EXPORT_MEDIA_TYPES = {
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}


class GradeRequest(BaseModel):
    raw_score: float = Field(ge=0, le=100)
    feedback: Optional[str] = None


def _ensure_grader_for_record(session, user, record_id: str) -> None:
    record = session.get(GradeRecord, parse_uuid(record_id, "grade record ID"))
    if record is None:
        # Let the service answer the 404
        return
    if record.assignment_submission_id is not None:
        submission = session.get(AssignmentSubmission, record.assignment_submission_id)
        content_id = session.get(Assignment, submission.assignment_id).module_content_id
    else:
        submission = session.get(QuizSubmission, record.quiz_submission_id)
        content_id = session.get(Quiz, submission.quiz_id).module_content_id
    ensure_course_staff(session, user, course_id_for_content(session, content_id))


@router.post("/assignment-submissions/{submission_id}", response_model=GradeRecord)
def grade_assignment_submission(
    submission_id: str,
    payload: GradeRequest,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor")),
):
    submission = session.get(AssignmentSubmission, parse_uuid(submission_id, "submission ID"))
    if submission is not None:
        assignment = session.get(Assignment, submission.assignment_id)
        ensure_course_staff(session, user, course_id_for_content(session, assignment.module_content_id))
    return GradingService(session).grade_assignment_submission(submission_id, user.id, payload.raw_score, payload.feedback)


@router.patch("/records/{record_id}", response_model=GradeRecord)
def update_grade_record(
    record_id: str,
    payload: GradeRequest,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor")),
):
    _ensure_grader_for_record(session, user, record_id)
    return GradingService(session).update_grade_record(record_id, user.id, payload.raw_score, payload.feedback)


@router.get("/lms/{module_id}/gradebook")
def get_gradebook(
    module_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor", "student")),
) -> Dict[str, Any]:
    return GradingService(session).get_gradebook(module_id, user)


@router.get("/lms/{module_id}/gradebook/export")
def export_gradebook(
    module_id: str,
    format: Literal["xlsx", "pdf"] = "xlsx",
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor")),
):
    gradebook = GradingService(session).get_gradebook(module_id, user)
    buffer = BytesIO()
    if format == "pdf":
        export_gradebook_pdf(gradebook, buffer)
    else:
        export_gradebook_excel(gradebook, buffer)
    return Response(
        content=buffer.getvalue(),
        media_type=_EXPORT_MEDIA_TYPES[format],
        headers={"Content-Disposition": f'attachment; filename="gradebook-{module_id}.{format}"'},
    )

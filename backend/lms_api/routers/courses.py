from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlmodel import SQLModel

from ..db import get_session
from ..models import Course, CourseEnrollment
from ..security import require_roles
from ..services.courses import CourseService


router = APIRouter(prefix="/courses", tags=["courses"])


class CourseCreate(SQLModel):
    code: str
    name: str
    description: Optional[str] = None
    mentor_id: Optional[int] = None


class EnrollmentCreate(SQLModel):
    student_id: int


@router.get("/", response_model=List[Course])
def list_courses(session=Depends(get_session), user=Depends(require_roles("admin", "mentor", "student"))):
    return CourseService(session).list_for(user)


@router.post("/", response_model=Course, status_code=status.HTTP_201_CREATED)
def create_course(payload: CourseCreate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return CourseService(session).create(payload.model_dump(exclude_unset=True))


@router.post("/{course_id}/enrollments", response_model=CourseEnrollment, status_code=status.HTTP_201_CREATED)
def enroll_student(
    course_id: str,
    payload: EnrollmentCreate,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    return CourseService(session).enroll(course_id, payload.student_id)

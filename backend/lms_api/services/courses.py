from typing import Any, Dict, List

from fastapi import HTTPException, status
from sqlmodel import Session, select

from ..models import Course, CourseEnrollment, RoleEnum, User
from ..utils.db_errors import DbErrorCode, db_error
from ..utils.ids import parse_uuid
from ..utils.log import log
from ..utils.sqlmodel_helpers import normalize_payload_for_model


class CourseService:
    def __init__(self, session: Session):
        self.session = session

    def _check_mentor(self, mentor_id) -> None:
        if mentor_id is None:
            return
        mentor = self.session.get(User, mentor_id)
        if not mentor or mentor.role != RoleEnum.mentor.value:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Mentor not found")

    @log(
        args_message=lambda a: f"Creating course {a['data'].get('code')}",
        success_message=lambda r, a: f"Course [{r.id}] successfully created.",
    )
    @db_error({DbErrorCode.UNIQUE_CONSTRAINT: "Course code already exists"})
    def create(self, data: Dict[str, Any]) -> Course:
        values = normalize_payload_for_model(Course, data)
        self._check_mentor(values.get("mentor_id"))
        course = Course(**values)
        self.session.add(course)
        self.session.commit()
        self.session.refresh(course)
        return course

    def list_for(self, user) -> List[Course]:
        stmt = select(Course)
        if user.role == RoleEnum.mentor.value:
            stmt = stmt.where(Course.mentor_id == user.id)
        elif user.role == RoleEnum.student.value:
            stmt = (
                stmt.join(CourseEnrollment, CourseEnrollment.course_id == Course.id)
                .where(CourseEnrollment.student_id == user.id)
                .distinct()
            )
        return list(self.session.exec(stmt.order_by(Course.code)).all())

    @log(
        args_message=lambda a: f"Enrolling student {a['student_id']} in course {a['course_id']}",
        success_message=lambda r, a: f"Enrollment [{r.id}] successfully created.",
    )
    @db_error({DbErrorCode.UNIQUE_CONSTRAINT: "Student is already enrolled in this course"})
    def enroll(self, course_id, student_id: int) -> CourseEnrollment:
        course_uuid = parse_uuid(course_id, "course ID")
        if not self.session.get(Course, course_uuid):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Course {course_id} not found")
        student = self.session.get(User, student_id)
        if not student or student.role != RoleEnum.student.value:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
        enrollment = CourseEnrollment(course_id=course_uuid, student_id=student_id)
        self.session.add(enrollment)
        self.session.commit()
        self.session.refresh(enrollment)
        return enrollment

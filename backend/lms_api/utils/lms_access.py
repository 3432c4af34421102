from typing import Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlmodel import select

from ..models import Course, CourseEnrollment, Module, ModuleContent, ModuleSection, RoleEnum
from ..services.lms_publish import is_published_now


def is_staff(user) -> bool:
    return user.role in (RoleEnum.admin.value, RoleEnum.mentor.value)


def is_enrolled(session, student_id: int, course_id) -> bool:
    enrollment = session.exec(
        select(CourseEnrollment).where(
            CourseEnrollment.course_id == course_id,
            CourseEnrollment.student_id == student_id,
        )
    ).first()
    return enrollment is not None


def ensure_course_access(session, user, course_id) -> Course:
    course = session.get(Course, course_id)
    if not course:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Course {course_id} not found")

    if user.role == RoleEnum.admin.value:
        return course

    if user.role == RoleEnum.mentor.value:
        if course.mentor_id != user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not the mentor of this course")
        return course

    if user.role == RoleEnum.student.value:
        if not is_enrolled(session, user.id, course.id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not enrolled in this course")
        return course

    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Role not allowed to access this course")


def ensure_course_staff(session, user, course_id) -> Course:
    if user.role == RoleEnum.student.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return ensure_course_access(session, user, course_id)


def ensure_module_access(session, user, module_id) -> Module:
    module = session.get(Module, module_id)
    if not module or module.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Module {module_id} not found")
    ensure_course_access(session, user, module.course_id)
    # Unpublished modules do not exist for students
    if user.role == RoleEnum.student.value and not is_published_now(module):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Module {module_id} not found")
    return module


def ensure_content_access(session, user, content_id) -> ModuleContent:
    content = session.get(ModuleContent, content_id)
    if not content or content.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Module content not found")
    ensure_module_access(session, user, content.module_id)
    if user.role == RoleEnum.student.value and not (
        is_published_now(content) and sections_visible(session, content.module_section_id)
    ):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Module content not found")
    return content


def sections_visible(session, section_id) -> bool:
    """True when every section from *section_id* up to the module root is live."""
    seen = set()
    while section_id is not None and section_id not in seen:
        seen.add(section_id)
        section = session.get(ModuleSection, section_id)
        if not section or section.deleted_at is not None or not is_published_now(section):
            return False
        section_id = section.parent_section_id
    return True


def ensure_submission_owner(user, student_id: Optional[int]) -> None:
    if user.role == RoleEnum.student.value and student_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to access this submission")


def course_id_for_content(session, module_content_id) -> Optional[UUID]:
    content = session.get(ModuleContent, module_content_id)
    module = session.get(Module, content.module_id) if content else None
    return module.course_id if module else None

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, Optional

from sqlmodel import Session, select

from . import db
from .config import settings
from .models import (
    Assignment,
    ContentTypeEnum,
    Course,
    CourseEnrollment,
    KnowledgeDocument,
    Module,
    ModuleContent,
    ModuleSection,
    RoleEnum,
    User,
    utcnow,
)
from .security import get_password_hash, verify_password
from .services.gemini import GeminiClient
from .services.vector_search import VectorSearchService


logger = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = "admin@lms.dev"
DEFAULT_ADMIN_PASSWORD = "admin123"
DEFAULT_ADMIN_NAME = "Demo Administrator"

DEMO_MENTOR = {"email": "mentor@lms.dev", "full_name": "Demo Mentor", "password": "mentor123"}
DEMO_STUDENT = {"email": "student@lms.dev", "full_name": "Demo Student", "password": "student123"}

DEMO_COURSE_CODE = "LMS101"

KNOWLEDGE_BASE = [
    {
        "content": "Enrollment for the next term opens two weeks before classes start. "
        "Students enroll from their dashboard once their balance is settled.",
        "metadata": {"topic": "enrollment"},
    },
    {
        "content": "Assignments can be resubmitted only when the mentor returns them for revision "
        "and the assignment allows resubmission.",
        "metadata": {"topic": "assignments"},
    },
]


def ensure_default_admin(session: Optional[Session] = None, force_password_reset: bool = False) -> User:
    """Create a default admin user if none exists."""
    owns_session = session is None
    session = session or Session(db.engine)
    try:
        existing = session.exec(select(User).where(User.email == DEFAULT_ADMIN_EMAIL)).first()
        if existing:
            updated = False
            if not verify_password(DEFAULT_ADMIN_PASSWORD, existing.hashed_password) and not force_password_reset:
                existing.hashed_password = get_password_hash(DEFAULT_ADMIN_PASSWORD)
                updated = True
            if existing.role != RoleEnum.admin.value:
                existing.role = RoleEnum.admin.value
                updated = True
            if not existing.is_active:
                existing.is_active = True
                updated = True
            if updated:
                session.add(existing)
                session.commit()
                session.refresh(existing)
            return existing
        user = User(
            email=DEFAULT_ADMIN_EMAIL,
            full_name=DEFAULT_ADMIN_NAME,
            hashed_password=get_password_hash(DEFAULT_ADMIN_PASSWORD),
            role=RoleEnum.admin.value,
            is_active=True,
            # Production deployments must replace the well-known password
            must_change_password=force_password_reset,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user
    finally:
        if owns_session:
            session.close()


def ensure_demo_data() -> None:
    """Populate users, a course with one module and the chatbot knowledge base."""
    with Session(db.engine) as session:
        ensure_default_admin(session)
        mentor = _get_or_create_user(session, role=RoleEnum.mentor.value, **DEMO_MENTOR)
        student = _get_or_create_user(session, role=RoleEnum.student.value, **DEMO_STUDENT)
        course = _ensure_course(session, mentor, student)
        _ensure_module(session, course)
        _ensure_knowledge_base(session)


def _get_or_create_user(session: Session, *, email: str, full_name: str, role: str, password: str) -> User:
    user = session.exec(select(User).where(User.email == email)).first()
    if user:
        if user.role != role or user.full_name != full_name:
            user.role = role
            user.full_name = full_name
            session.add(user)
            session.commit()
        return user

    user = User(
        email=email,
        full_name=full_name,
        hashed_password=get_password_hash(password),
        role=role,
        is_active=True,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def _ensure_course(session: Session, mentor: User, student: User) -> Course:
    course = session.exec(select(Course).where(Course.code == DEMO_COURSE_CODE)).first()
    if course is None:
        course = Course(
            code=DEMO_COURSE_CODE,
            name="Introduction to Learning Platforms",
            description="Demo course used in local environments.",
            mentor_id=mentor.id,
        )
        session.add(course)
        session.commit()
        session.refresh(course)

    enrolled = session.exec(
        select(CourseEnrollment).where(
            CourseEnrollment.course_id == course.id,
            CourseEnrollment.student_id == student.id,
        )
    ).first()
    if enrolled is None:
        session.add(CourseEnrollment(course_id=course.id, student_id=student.id))
        session.commit()
    return course


def _ensure_module(session: Session, course: Course) -> Module:
    module = session.exec(select(Module).where(Module.course_id == course.id)).first()
    if module is not None:
        return module

    now = utcnow()
    module = Module(course_id=course.id, title="Week 1: Getting started", published_at=now)
    session.add(module)
    session.flush()
    section = ModuleSection(module_id=module.id, title="Orientation", order=0, published_at=now)
    session.add(section)
    session.flush()

    contents: Dict[str, ModuleContent] = {}
    for order, (title, content_type, body) in enumerate(
        [
            ("Welcome", ContentTypeEnum.lesson, {"blocks": [{"type": "paragraph", "text": "Welcome to the course."}]}),
            ("First reflection", ContentTypeEnum.assignment, None),
        ]
    ):
        content = ModuleContent(
            module_id=module.id,
            module_section_id=section.id,
            order=order,
            content_type=content_type,
            title=title,
            content=body,
            published_at=now,
        )
        session.add(content)
        contents[title] = content
    session.flush()

    session.add(
        Assignment(
            module_content_id=contents["First reflection"].id,
            max_score=100,
            due_date=now + timedelta(days=7),
            allow_late_submission=True,
            allow_resubmission=True,
            max_attempts=3,
            late_penalty=10,
        )
    )
    session.commit()
    session.refresh(module)
    return module


def _ensure_knowledge_base(session: Session) -> None:
    if not settings.chatbot.gemini_api_key:
        logger.info("GEMINI_API_KEY not configured; skipping knowledge base ingestion")
        return
    if session.exec(select(KnowledgeDocument)).first() is not None:
        return

    search = VectorSearchService(session, GeminiClient())
    for entry in KNOWLEDGE_BASE:
        search.add_document(entry["content"], entry["metadata"])

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every datetime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Timestamped(SQLModel):
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class PublishWindow(Timestamped):
    published_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    to_publish_at: Optional[datetime] = Field(default=None, index=True, sa_column_kwargs={"nullable": True})
    unpublished_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    deleted_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})


class RoleEnum(str, Enum):
    admin = "admin"
    mentor = "mentor"
    student = "student"


class ContentTypeEnum(str, Enum):
    lesson = "lesson"
    assignment = "assignment"
    quiz = "quiz"
    file = "file"
    url = "url"
    video = "video"


class AssignmentModeEnum(str, Enum):
    individual = "individual"
    group = "group"


class SubmissionStateEnum(str, Enum):
    draft = "draft"
    submitted = "submitted"
    graded = "graded"
    returned = "returned"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    full_name: str
    hashed_password: str
    role: str = Field(index=True)  # admin, mentor, student
    is_active: bool = Field(default=True)
    must_change_password: bool = Field(default=False, nullable=False)


class Course(Timestamped, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    code: str = Field(index=True, unique=True)
    name: str
    description: Optional[str] = None
    mentor_id: Optional[int] = Field(
        default=None,
        foreign_key="user.id",
        index=True,
        sa_column_kwargs={"nullable": True},
    )


class CourseEnrollment(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("course_id", "student_id", name="uq_course_enrollment"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    course_id: UUID = Field(foreign_key="course.id", index=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", index=True)
    enrolled_at: datetime = Field(default_factory=utcnow)


class Module(PublishWindow, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    course_id: UUID = Field(foreign_key="course.id", index=True, ondelete="CASCADE")
    title: str
    description: Optional[str] = None


class ModuleSection(PublishWindow, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    module_id: UUID = Field(foreign_key="module.id", index=True, ondelete="CASCADE")
    # Top-level sections (e.g. "Week 1") have no parent
    parent_section_id: Optional[UUID] = Field(
        default=None,
        foreign_key="modulesection.id",
        index=True,
        ondelete="CASCADE",
        sa_column_kwargs={"nullable": True},
    )
    title: str
    order: int = Field(default=0)


class ModuleContent(PublishWindow, table=True):
    __table_args__ = (
        # Soft-deleted rows free their title
        Index(
            "uq_module_content_section_title",
            "module_section_id",
            "title",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    module_id: UUID = Field(foreign_key="module.id", index=True, ondelete="CASCADE")
    module_section_id: Optional[UUID] = Field(
        default=None,
        foreign_key="modulesection.id",
        index=True,
        ondelete="CASCADE",
        sa_column_kwargs={"nullable": True},
    )
    order: int = Field(default=0)
    content_type: ContentTypeEnum = Field(default=ContentTypeEnum.lesson)
    title: str
    subtitle: Optional[str] = None
    content: Optional[Any] = Field(default=None, sa_column=Column(JSON, nullable=True))


class Assignment(Timestamped, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    module_content_id: UUID = Field(
        foreign_key="modulecontent.id", unique=True, index=True, ondelete="CASCADE"
    )
    rubric: Optional[Any] = Field(default=None, sa_column=Column(JSON, nullable=True))
    mode: AssignmentModeEnum = Field(default=AssignmentModeEnum.individual)
    max_score: float = Field(default=100)
    due_date: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    allow_late_submission: bool = Field(default=False)
    allow_resubmission: bool = Field(default=False)
    max_attempts: Optional[int] = Field(default=None, sa_column_kwargs={"nullable": True})
    # Percent deducted per late day
    late_penalty: Optional[float] = Field(default=None, sa_column_kwargs={"nullable": True})
    deleted_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})


class Quiz(Timestamped, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    module_content_id: UUID = Field(
        foreign_key="modulecontent.id", unique=True, index=True, ondelete="CASCADE"
    )
    time_limit: Optional[int] = Field(default=None, sa_column_kwargs={"nullable": True})  # minutes
    max_attempts: Optional[int] = Field(default=None, sa_column_kwargs={"nullable": True})
    allow_late_submission: bool = Field(default=False)
    allow_resubmission: bool = Field(default=False)
    late_penalty: Optional[float] = Field(default=None, sa_column_kwargs={"nullable": True})
    due_date: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    grace_period_minutes: int = Field(default=0)
    questions: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    deleted_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})


class Video(Timestamped, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    module_content_id: UUID = Field(
        foreign_key="modulecontent.id", unique=True, index=True, ondelete="CASCADE"
    )
    url: str
    duration: Optional[int] = Field(default=None, sa_column_kwargs={"nullable": True})  # seconds
    transcript: Optional[str] = None
    deleted_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})


class ExternalUrl(Timestamped, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    module_content_id: UUID = Field(
        foreign_key="modulecontent.id", unique=True, index=True, ondelete="CASCADE"
    )
    url: str
    deleted_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})


class FileResource(Timestamped, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    module_content_id: UUID = Field(
        foreign_key="modulecontent.id", unique=True, index=True, ondelete="CASCADE"
    )
    name: str = Field(max_length=512)
    url: str = Field(max_length=1024)
    size: Optional[int] = Field(default=None, sa_column_kwargs={"nullable": True})
    mime_type: Optional[str] = Field(default=None, max_length=255, sa_column_kwargs={"nullable": True})
    deleted_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})


class AssignmentSubmission(Timestamped, table=True):
    __table_args__ = (
        UniqueConstraint(
            "assignment_id", "student_id", "attempt_number", name="uq_assignment_submission_attempt"
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    assignment_id: UUID = Field(foreign_key="assignment.id", index=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", index=True)
    state: SubmissionStateEnum = Field(default=SubmissionStateEnum.draft, index=True)
    content: Optional[Any] = Field(default=None, sa_column=Column(JSON, nullable=True))
    attachments: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    group_snapshot: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    submitted_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    late_days: Optional[int] = Field(default=None, sa_column_kwargs={"nullable": True})
    attempt_number: int = Field(default=1)
    feedback: Optional[str] = Field(default=None, sa_column_kwargs={"nullable": True})
    returned_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    deleted_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})


class QuizSubmission(Timestamped, table=True):
    __table_args__ = (
        UniqueConstraint("quiz_id", "student_id", "attempt_number", name="uq_quiz_submission_attempt"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    quiz_id: UUID = Field(foreign_key="quiz.id", index=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", index=True)
    state: SubmissionStateEnum = Field(default=SubmissionStateEnum.draft, index=True)
    answers: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    raw_score: Optional[float] = Field(default=None, sa_column_kwargs={"nullable": True})
    final_score: Optional[float] = Field(default=None, sa_column_kwargs={"nullable": True})
    grade: Optional[str] = Field(default=None, sa_column_kwargs={"nullable": True})
    question_results: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    submitted_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    graded_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})
    late_days: Optional[int] = Field(default=None, sa_column_kwargs={"nullable": True})
    time_spent: Optional[int] = Field(default=None, sa_column_kwargs={"nullable": True})  # seconds
    attempt_number: int = Field(default=1)
    feedback: Optional[str] = Field(default=None, sa_column_kwargs={"nullable": True})
    returned_at: Optional[datetime] = Field(default=None, sa_column_kwargs={"nullable": True})


class GradeRecord(Timestamped, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    student_id: int = Field(foreign_key="user.id", index=True)
    assignment_submission_id: Optional[UUID] = Field(
        default=None,
        foreign_key="assignmentsubmission.id",
        unique=True,
        ondelete="CASCADE",
        sa_column_kwargs={"nullable": True},
    )
    quiz_submission_id: Optional[UUID] = Field(
        default=None,
        foreign_key="quizsubmission.id",
        unique=True,
        ondelete="CASCADE",
        sa_column_kwargs={"nullable": True},
    )
    raw_score: float
    final_score: float
    grade: str = Field(max_length=2)
    feedback: Optional[str] = Field(default=None, sa_column_kwargs={"nullable": True})
    graded_by: Optional[int] = Field(default=None, foreign_key="user.id", sa_column_kwargs={"nullable": True})
    graded_at: datetime = Field(default_factory=utcnow)


class KnowledgeDocument(Timestamped, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    content: str
    # "metadata" is reserved on declarative classes, hence the attribute name
    doc_metadata: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column("metadata", JSON, nullable=True))
    embedding: List[float] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

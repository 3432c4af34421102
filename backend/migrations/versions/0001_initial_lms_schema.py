"""
Initial LMS schema

Revision ID: 0001_initial_lms_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_lms_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


content_type_enum = sa.Enum("lesson", "assignment", "quiz", "file", "url", "video", name="contenttypeenum")
assignment_mode_enum = sa.Enum("individual", "group", name="assignmentmodeenum")
submission_state_enum = sa.Enum("draft", "submitted", "graded", "returned", name="submissionstateenum")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _publish_window():
    return _timestamps() + [
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("to_publish_at", sa.DateTime(), nullable=True),
        sa.Column("unpublished_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    ]


def _content_child(table: str, *columns: sa.Column) -> None:
    op.create_table(
        table,
        *_timestamps(),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("module_content_id", sa.Uuid(), nullable=False),
        *columns,
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["module_content_id"], ["modulecontent.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f(f"ix_{table}_module_content_id"), table, ["module_content_id"], unique=True)


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_user_email"), "user", ["email"], unique=True)
    op.create_index(op.f("ix_user_role"), "user", ["role"], unique=False)

    op.create_table(
        "course",
        *_timestamps(),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("mentor_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["mentor_id"], ["user.id"], ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_course_code"), "course", ["code"], unique=True)
    op.create_index(op.f("ix_course_mentor_id"), "course", ["mentor_id"], unique=False)

    op.create_table(
        "courseenrollment",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("course_id", sa.Uuid(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("enrolled_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["course_id"], ["course.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["student_id"], ["user.id"], ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("course_id", "student_id", name="uq_course_enrollment"),
    )
    op.create_index(op.f("ix_courseenrollment_course_id"), "courseenrollment", ["course_id"], unique=False)
    op.create_index(op.f("ix_courseenrollment_student_id"), "courseenrollment", ["student_id"], unique=False)

    op.create_table(
        "module",
        *_publish_window(),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("course_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["course_id"], ["course.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_module_course_id"), "module", ["course_id"], unique=False)
    op.create_index(op.f("ix_module_to_publish_at"), "module", ["to_publish_at"], unique=False)

    op.create_table(
        "modulesection",
        *_publish_window(),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("module_id", sa.Uuid(), nullable=False),
        sa.Column("parent_section_id", sa.Uuid(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["module_id"], ["module.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_section_id"], ["modulesection.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_modulesection_module_id"), "modulesection", ["module_id"], unique=False)
    op.create_index(op.f("ix_modulesection_parent_section_id"), "modulesection", ["parent_section_id"], unique=False)
    op.create_index(op.f("ix_modulesection_to_publish_at"), "modulesection", ["to_publish_at"], unique=False)

    op.create_table(
        "modulecontent",
        *_publish_window(),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("module_id", sa.Uuid(), nullable=False),
        sa.Column("module_section_id", sa.Uuid(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("content_type", content_type_enum, nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("subtitle", sa.String(), nullable=True),
        sa.Column("content", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["module_id"], ["module.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["module_section_id"], ["modulesection.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_module_content_section_title",
        "modulecontent",
        ["module_section_id", "title"],
        unique=True,
        sqlite_where=sa.text("deleted_at IS NULL"),
        postgresql_where=sa.text("deleted_at IS NULL"),
    )
    op.create_index(op.f("ix_modulecontent_module_id"), "modulecontent", ["module_id"], unique=False)
    op.create_index(op.f("ix_modulecontent_module_section_id"), "modulecontent", ["module_section_id"], unique=False)
    op.create_index(op.f("ix_modulecontent_to_publish_at"), "modulecontent", ["to_publish_at"], unique=False)

    _content_child(
        "assignment",
        sa.Column("rubric", sa.JSON(), nullable=True),
        sa.Column("mode", assignment_mode_enum, nullable=False),
        sa.Column("max_score", sa.Float(), nullable=False),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("allow_late_submission", sa.Boolean(), nullable=False),
        sa.Column("allow_resubmission", sa.Boolean(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=True),
        sa.Column("late_penalty", sa.Float(), nullable=True),
    )
    _content_child(
        "quiz",
        sa.Column("time_limit", sa.Integer(), nullable=True),
        sa.Column("max_attempts", sa.Integer(), nullable=True),
        sa.Column("allow_late_submission", sa.Boolean(), nullable=False),
        sa.Column("allow_resubmission", sa.Boolean(), nullable=False),
        sa.Column("late_penalty", sa.Float(), nullable=True),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("grace_period_minutes", sa.Integer(), nullable=False),
        sa.Column("questions", sa.JSON(), nullable=False),
    )
    _content_child(
        "video",
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("transcript", sa.String(), nullable=True),
    )
    _content_child(
        "externalurl",
        sa.Column("url", sa.String(), nullable=False),
    )
    _content_child(
        "fileresource",
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("url", sa.String(length=1024), nullable=False),
        sa.Column("size", sa.Integer(), nullable=True),
        sa.Column("mime_type", sa.String(length=255), nullable=True),
    )

    op.create_table(
        "assignmentsubmission",
        *_timestamps(),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("assignment_id", sa.Uuid(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("state", submission_state_enum, nullable=False),
        sa.Column("content", sa.JSON(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("group_snapshot", sa.JSON(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("late_days", sa.Integer(), nullable=True),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("feedback", sa.String(), nullable=True),
        sa.Column("returned_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["assignment_id"], ["assignment.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["student_id"], ["user.id"], ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("assignment_id", "student_id", "attempt_number", name="uq_assignment_submission_attempt"),
    )
    op.create_index(op.f("ix_assignmentsubmission_assignment_id"), "assignmentsubmission", ["assignment_id"], unique=False)
    op.create_index(op.f("ix_assignmentsubmission_student_id"), "assignmentsubmission", ["student_id"], unique=False)
    op.create_index(op.f("ix_assignmentsubmission_state"), "assignmentsubmission", ["state"], unique=False)

    op.create_table(
        "quizsubmission",
        *_timestamps(),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("quiz_id", sa.Uuid(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("state", submission_state_enum, nullable=False),
        sa.Column("answers", sa.JSON(), nullable=False),
        sa.Column("raw_score", sa.Float(), nullable=True),
        sa.Column("final_score", sa.Float(), nullable=True),
        sa.Column("grade", sa.String(), nullable=True),
        sa.Column("question_results", sa.JSON(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("graded_at", sa.DateTime(), nullable=True),
        sa.Column("late_days", sa.Integer(), nullable=True),
        sa.Column("time_spent", sa.Integer(), nullable=True),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("feedback", sa.String(), nullable=True),
        sa.Column("returned_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["quiz_id"], ["quiz.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["student_id"], ["user.id"], ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("quiz_id", "student_id", "attempt_number", name="uq_quiz_submission_attempt"),
    )
    op.create_index(op.f("ix_quizsubmission_quiz_id"), "quizsubmission", ["quiz_id"], unique=False)
    op.create_index(op.f("ix_quizsubmission_student_id"), "quizsubmission", ["student_id"], unique=False)
    op.create_index(op.f("ix_quizsubmission_state"), "quizsubmission", ["state"], unique=False)

    op.create_table(
        "graderecord",
        *_timestamps(),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("assignment_submission_id", sa.Uuid(), nullable=True),
        sa.Column("quiz_submission_id", sa.Uuid(), nullable=True),
        sa.Column("raw_score", sa.Float(), nullable=False),
        sa.Column("final_score", sa.Float(), nullable=False),
        sa.Column("grade", sa.String(length=2), nullable=False),
        sa.Column("feedback", sa.String(), nullable=True),
        sa.Column("graded_by", sa.Integer(), nullable=True),
        sa.Column("graded_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["student_id"], ["user.id"], ),
        sa.ForeignKeyConstraint(["assignment_submission_id"], ["assignmentsubmission.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["quiz_submission_id"], ["quizsubmission.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["graded_by"], ["user.id"], ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("assignment_submission_id"),
        sa.UniqueConstraint("quiz_submission_id"),
    )
    op.create_index(op.f("ix_graderecord_student_id"), "graderecord", ["student_id"], unique=False)

    op.create_table(
        "knowledgedocument",
        *_timestamps(),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("content", sa.String(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("embedding", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("knowledgedocument")
    op.drop_index(op.f("ix_graderecord_student_id"), table_name="graderecord")
    op.drop_table("graderecord")
    op.drop_table("quizsubmission")
    op.drop_table("assignmentsubmission")
    for table in ("fileresource", "externalurl", "video", "quiz", "assignment"):
        op.drop_index(op.f(f"ix_{table}_module_content_id"), table_name=table)
        op.drop_table(table)
    op.drop_index("uq_module_content_section_title", table_name="modulecontent")
    op.drop_table("modulecontent")
    op.drop_table("modulesection")
    op.drop_table("module")
    op.drop_table("courseenrollment")
    op.drop_table("course")
    op.drop_index(op.f("ix_user_role"), table_name="user")
    op.drop_index(op.f("ix_user_email"), table_name="user")
    op.drop_table("user")

    bind = op.get_bind()
    submission_state_enum.drop(bind, checkfirst=True)
    assignment_mode_enum.drop(bind, checkfirst=True)
    content_type_enum.drop(bind, checkfirst=True)

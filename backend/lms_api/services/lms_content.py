"""Content items of the module tree and their one-to-one payload records."""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlmodel import Session, select

from ..models import (
    Assignment,
    AssignmentSubmission,
    ContentTypeEnum,
    ExternalUrl,
    FileResource,
    Module,
    ModuleContent,
    ModuleSection,
    Quiz,
    QuizSubmission,
    RoleEnum,
    Video,
    utcnow,
)
from ..utils.db_errors import DbErrorCode, db_error
from ..utils.ids import parse_uuid
from ..utils.lms_access import ensure_content_access
from ..utils.log import log
from ..utils.sqlmodel_helpers import apply_partial_update, normalize_payload_for_model
from .content_resources import RESOURCE_SERVICES
from .lms_modules import PUBLISH_FIELDS, serialize_node


PAYLOAD_MODELS = {
    ContentTypeEnum.assignment: Assignment,
    ContentTypeEnum.quiz: Quiz,
    ContentTypeEnum.file: FileResource,
    ContentTypeEnum.url: ExternalUrl,
    ContentTypeEnum.video: Video,
}

# Answer keys never shown to students
_QUIZ_SECRET_KEYS = ("correct_answer", "expected_answer", "acceptable_answers", "match_pattern", "feedback")

DUPLICATE_TITLE_MESSAGE = "Module content title already exists in this section."


def _student_questions(questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    cleaned = []
    for question in questions or []:
        item = {key: value for key, value in question.items() if key not in _QUIZ_SECRET_KEYS}
        if "options" in item:
            item["options"] = [
                {key: value for key, value in option.items() if key != "correct"} for option in item["options"]
            ]
        if "matches" in item:
            item["matches"] = [
                {key: value for key, value in pair.items() if key != "correct_match_id"} for pair in item["matches"]
            ]
        cleaned.append(item)
    return cleaned


class LmsContentService:
    def __init__(self, session: Session):
        self.session = session

    def _get(self, content_id) -> ModuleContent:
        content_uuid = parse_uuid(content_id, "content ID")
        content = self.session.get(ModuleContent, content_uuid)
        if not content or content.deleted_at is not None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Module content not found")
        return content

    def get_in_module(self, module_id, content_id) -> ModuleContent:
        module_uuid = parse_uuid(module_id, "module ID")
        content = self._get(content_id)
        if content.module_id != module_uuid:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Module content not found")
        return content

    def _payload_for(self, content: ModuleContent, include_deleted: bool = False):
        model = PAYLOAD_MODELS.get(content.content_type)
        if model is None:
            return None
        stmt = select(model).where(model.module_content_id == content.id)
        if not include_deleted:
            stmt = stmt.where(model.deleted_at.is_(None))
        return self.session.exec(stmt).first()

    def _check_section(self, module_id: UUID, section_id: Optional[UUID]) -> None:
        if section_id is None:
            return
        section = self.session.get(ModuleSection, section_id)
        if not section or section.deleted_at is not None or section.module_id != module_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Section does not belong to this module",
            )

    def _ensure_unique_title(
        self, section_id: Optional[UUID], module_id: UUID, title: str, exclude_id: Optional[UUID] = None
    ) -> None:
        stmt = select(ModuleContent.id).where(
            ModuleContent.module_id == module_id,
            ModuleContent.title == title,
            ModuleContent.deleted_at.is_(None),
        )
        if section_id is None:
            stmt = stmt.where(ModuleContent.module_section_id.is_(None))
        else:
            stmt = stmt.where(ModuleContent.module_section_id == section_id)
        if exclude_id is not None:
            stmt = stmt.where(ModuleContent.id != exclude_id)
        if self.session.exec(stmt).first() is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DUPLICATE_TITLE_MESSAGE)

    def _create_payload(self, content: ModuleContent, payload: Optional[Dict[str, Any]]) -> None:
        content_type = content.content_type
        if content_type == ContentTypeEnum.lesson:
            return
        if content_type.value in RESOURCE_SERVICES:
            if not payload:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Payload is required for {content_type.value} content",
                )
            RESOURCE_SERVICES[content_type.value](self.session).create(content.id, payload, commit=False)
            return
        model = PAYLOAD_MODELS[content_type]
        values = normalize_payload_for_model(model, payload or {}, exclude=("module_content_id", "deleted_at"))
        self.session.add(model(module_content_id=content.id, **values))
        self.session.flush()

    def serialize(self, content: ModuleContent, user=None) -> Dict[str, Any]:
        is_student = user is not None and user.role == RoleEnum.student.value
        data = serialize_node(content, include_publish=not is_student)
        record = self._payload_for(content)
        payload = record.model_dump(exclude={"deleted_at"}) if record is not None else None
        if payload is not None and is_student and content.content_type == ContentTypeEnum.quiz:
            payload["questions"] = _student_questions(payload.get("questions") or [])
        data["payload"] = payload
        if is_student and record is not None:
            data["submissions"] = self._own_submissions(content.content_type, record.id, user.id)
        return data

    def _own_submissions(self, content_type: ContentTypeEnum, payload_id: UUID, student_id: int) -> List[Dict[str, Any]]:
        if content_type == ContentTypeEnum.assignment:
            rows = self.session.exec(
                select(AssignmentSubmission)
                .where(
                    AssignmentSubmission.assignment_id == payload_id,
                    AssignmentSubmission.student_id == student_id,
                    AssignmentSubmission.deleted_at.is_(None),
                )
                .order_by(AssignmentSubmission.attempt_number)
            ).all()
        elif content_type == ContentTypeEnum.quiz:
            rows = self.session.exec(
                select(QuizSubmission)
                .where(QuizSubmission.quiz_id == payload_id, QuizSubmission.student_id == student_id)
                .order_by(QuizSubmission.attempt_number)
            ).all()
        else:
            return []
        return [row.model_dump() for row in rows]

    @log(
        args_message=lambda a: f"Creating module content in module {a['module_id']}",
        success_message=lambda r, a: f"Module content [{r.id}] successfully created.",
        error_message=lambda e, a: f"Error creating module content in module {a['module_id']}: {e}",
    )
    @db_error(
        {
            DbErrorCode.UNIQUE_CONSTRAINT: DUPLICATE_TITLE_MESSAGE,
            DbErrorCode.FOREIGN_KEY_CONSTRAINT: "Module or section not found",
        }
    )
    def create(self, module_id, data: Dict[str, Any]) -> ModuleContent:
        module_uuid = parse_uuid(module_id, "module ID")
        module = self.session.get(Module, module_uuid)
        if not module or module.deleted_at is not None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Module {module_id} not found")

        payload = data.get("payload")
        values = normalize_payload_for_model(ModuleContent, data, exclude=("module_id", "deleted_at") + PUBLISH_FIELDS)
        self._check_section(module.id, values.get("module_section_id"))
        self._ensure_unique_title(values.get("module_section_id"), module.id, values.get("title"))

        content = ModuleContent(module_id=module.id, **values)
        self.session.add(content)
        self.session.flush()
        self._create_payload(content, payload)
        self.session.commit()
        self.session.refresh(content)
        return content

    @log(args_message=lambda a: f"Fetching module content {a['content_id']}", success_message=False)
    def find_one(self, content_id, user) -> Dict[str, Any]:
        content = ensure_content_access(self.session, user, parse_uuid(content_id, "content ID"))
        return self.serialize(content, user)

    @log(
        args_message=lambda a: f"Updating module content {a['content_id']}",
        success_message=lambda r, a: f"Module content [{r.id}] successfully updated.",
    )
    @db_error({DbErrorCode.UNIQUE_CONSTRAINT: DUPLICATE_TITLE_MESSAGE})
    def update(self, content_id, data: Dict[str, Any]) -> ModuleContent:
        content = self._get(content_id)
        new_type = data.get("content_type")
        if new_type is not None and ContentTypeEnum(new_type) != content.content_type:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Changing contentType is not allowed. Please remove and recreate the content.",
            )

        values = normalize_payload_for_model(
            ModuleContent, data, exclude=("module_id", "content_type", "deleted_at") + PUBLISH_FIELDS
        )
        section_id = values.get("module_section_id", content.module_section_id)
        if "module_section_id" in values:
            self._check_section(content.module_id, section_id)
        if "title" in values or "module_section_id" in values:
            self._ensure_unique_title(section_id, content.module_id, values.get("title", content.title), content.id)
        apply_partial_update(content, values)
        self.session.add(content)

        payload = data.get("payload")
        if payload:
            if content.content_type.value in RESOURCE_SERVICES:
                RESOURCE_SERVICES[content.content_type.value](self.session).update(content.id, payload, commit=False)
            else:
                record = self._payload_for(content)
                if record is None:
                    raise HTTPException(
                        status_code=status.HTTP_404_NOT_FOUND,
                        detail=f"{content.content_type.value.capitalize()} not found",
                    )
                apply_partial_update(record, payload, exclude=("module_content_id", "deleted_at"))
                self.session.add(record)

        self.session.commit()
        self.session.refresh(content)
        return content

    @log(
        args_message=lambda a: f"Removing module content {a['content_id']} direct_delete={a['direct_delete']}",
        success_message=lambda r, a: r["message"],
    )
    @db_error()
    def remove(self, content_id, direct_delete: bool = False) -> Dict[str, str]:
        content = self._get(content_id)
        if direct_delete:
            # Payload rows and their submissions go with the FK cascade
            self.session.delete(content)
            self.session.commit()
            return {"message": "Module content successfully deleted."}

        now = utcnow()
        record = self._payload_for(content)
        if record is not None and content.content_type.value in RESOURCE_SERVICES:
            RESOURCE_SERVICES[content.content_type.value](self.session).remove(content.id, commit=False)
        elif record is not None:
            record.deleted_at = now
            record.updated_at = now
            self.session.add(record)
        content.deleted_at = now
        content.updated_at = now
        self.session.add(content)
        self.session.commit()
        return {"message": "Module content successfully soft-deleted."}

"""Modules and their section tree.

A module belongs to a course and holds sections; sections nest through
``parent_section_id`` and hold the content items. Soft deletion stamps
``deleted_at`` on the node and everything below it, hard deletion relies on
the ``ON DELETE CASCADE`` foreign keys.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlmodel import Session, select

from ..models import (
    Course,
    CourseEnrollment,
    Module,
    ModuleContent,
    ModuleSection,
    RoleEnum,
    utcnow,
)
from ..utils.db_errors import DbErrorCode, db_error
from ..utils.ids import parse_uuid
from ..utils.lms_access import ensure_module_access
from ..utils.log import log
from ..utils.sqlmodel_helpers import apply_partial_update, normalize_payload_for_model
from .lms_publish import is_published_now, section_tree_ids


PUBLISH_FIELDS = ("published_at", "to_publish_at", "unpublished_at")
_NODE_READONLY = ("module_id", "deleted_at") + PUBLISH_FIELDS


def serialize_node(node, include_publish: bool) -> Dict[str, Any]:
    data = node.model_dump(exclude={"deleted_at"})
    if not include_publish:
        for field in PUBLISH_FIELDS:
            data.pop(field, None)
    return data


class LmsModuleService:
    def __init__(self, session: Session):
        self.session = session

    def get_module(self, module_id) -> Module:
        module_uuid = parse_uuid(module_id, "module ID")
        module = self.session.get(Module, module_uuid)
        if not module or module.deleted_at is not None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Module {module_id} not found")
        return module

    def _get_section(self, section_id) -> ModuleSection:
        section_uuid = parse_uuid(section_id, "section ID")
        section = self.session.get(ModuleSection, section_uuid)
        if not section or section.deleted_at is not None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Section {section_id} not found")
        return section

    def get_section(self, module_id, section_id) -> ModuleSection:
        module = self.get_module(module_id)
        section = self._get_section(section_id)
        if section.module_id != module.id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Section {section_id} not found")
        return section

    def _check_parent(self, module_id: UUID, parent_id: Optional[UUID], section_id: Optional[UUID] = None) -> None:
        if parent_id is None:
            return
        if section_id is not None and parent_id in section_tree_ids(self.session, [section_id]):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A section cannot be nested inside itself",
            )
        parent = self.session.get(ModuleSection, parent_id)
        if not parent or parent.deleted_at is not None or parent.module_id != module_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Parent section does not belong to this module",
            )

    @log(
        args_message=lambda a: f"Creating module in course {a['course_id']}",
        success_message=lambda r, a: f"Module [{r.id}] successfully created.",
    )
    @db_error({DbErrorCode.FOREIGN_KEY_CONSTRAINT: "Course not found"})
    def create_module(self, course_id, data: Dict[str, Any]) -> Module:
        course_uuid = parse_uuid(course_id, "course ID")
        if not self.session.get(Course, course_uuid):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Course {course_id} not found")
        values = normalize_payload_for_model(Module, data, exclude=("course_id", "deleted_at") + PUBLISH_FIELDS)
        module = Module(course_id=course_uuid, **values)
        self.session.add(module)
        self.session.commit()
        self.session.refresh(module)
        return module

    @log(args_message=lambda a: f"Listing modules for user {a['user'].id}", success_message=False)
    def list_modules(self, user, course_id=None) -> List[Module]:
        stmt = select(Module).join(Course, Module.course_id == Course.id).where(Module.deleted_at.is_(None))
        if course_id is not None:
            stmt = stmt.where(Module.course_id == parse_uuid(course_id, "course ID"))
        if user.role == RoleEnum.mentor.value:
            stmt = stmt.where(Course.mentor_id == user.id)
        elif user.role == RoleEnum.student.value:
            stmt = stmt.join(CourseEnrollment, CourseEnrollment.course_id == Course.id).where(
                CourseEnrollment.student_id == user.id
            )
        modules = self.session.exec(stmt.order_by(Module.created_at)).all()
        if user.role == RoleEnum.student.value:
            now = utcnow()
            modules = [module for module in modules if is_published_now(module, now)]
        return list(modules)

    @log(args_message=lambda a: f"Building tree of module {a['module_id']}", success_message=False)
    def get_module_tree(self, module_id, user) -> Dict[str, Any]:
        module_uuid = parse_uuid(module_id, "module ID")
        module = ensure_module_access(self.session, user, module_uuid)
        is_admin = user.role == RoleEnum.admin.value
        now = utcnow()

        def visible(node) -> bool:
            return is_admin or is_published_now(node, now)

        sections = [
            section
            for section in self.session.exec(
                select(ModuleSection)
                .where(ModuleSection.module_id == module.id, ModuleSection.deleted_at.is_(None))
                .order_by(ModuleSection.order, ModuleSection.created_at)
            ).all()
            if visible(section)
        ]
        contents = [
            content
            for content in self.session.exec(
                select(ModuleContent)
                .where(ModuleContent.module_id == module.id, ModuleContent.deleted_at.is_(None))
                .order_by(ModuleContent.order, ModuleContent.created_at)
            ).all()
            if visible(content)
        ]

        contents_by_section: Dict[Optional[UUID], List[Dict[str, Any]]] = {}
        for content in contents:
            contents_by_section.setdefault(content.module_section_id, []).append(serialize_node(content, is_admin))

        nodes = {section.id: serialize_node(section, is_admin) for section in sections}
        roots: List[Dict[str, Any]] = []
        for section in sections:
            node = nodes[section.id]
            node["contents"] = contents_by_section.get(section.id, [])
            node.setdefault("subsections", [])
            if section.parent_section_id is None:
                roots.append(node)
            elif section.parent_section_id in nodes:
                nodes[section.parent_section_id].setdefault("subsections", []).append(node)
            # Children of hidden sections stay hidden

        tree = serialize_node(module, is_admin)
        tree["sections"] = roots
        tree["contents"] = contents_by_section.get(None, [])
        return tree

    @log(
        args_message=lambda a: f"Updating module {a['module_id']}",
        success_message=lambda r, a: f"Module [{r.id}] successfully updated.",
    )
    def update_module(self, module_id, data: Dict[str, Any]) -> Module:
        module = self.get_module(module_id)
        apply_partial_update(module, data, exclude=("course_id", "deleted_at") + PUBLISH_FIELDS)
        self.session.add(module)
        self.session.commit()
        self.session.refresh(module)
        return module

    def _soft_delete_sections(self, section_ids: List[UUID], now) -> None:
        if not section_ids:
            return
        nodes = list(self.session.exec(select(ModuleSection).where(ModuleSection.id.in_(section_ids))).all())
        nodes += self.session.exec(
            select(ModuleContent).where(
                ModuleContent.module_section_id.in_(section_ids),
                ModuleContent.deleted_at.is_(None),
            )
        ).all()
        for node in nodes:
            if node.deleted_at is None:
                node.deleted_at = now
                node.updated_at = now
                self.session.add(node)

    @log(
        args_message=lambda a: f"Removing module {a['module_id']} direct_delete={a['direct_delete']}",
        success_message=lambda r, a: r["message"],
    )
    @db_error()
    def remove_module(self, module_id, direct_delete: bool = False) -> Dict[str, str]:
        module = self.get_module(module_id)
        module_uuid = module.id
        if direct_delete:
            self.session.delete(module)
            self.session.commit()
            return {"message": f'Module "{module_uuid}" and all associated contents were permanently deleted.'}

        now = utcnow()
        section_ids = self.session.exec(select(ModuleSection.id).where(ModuleSection.module_id == module.id)).all()
        self._soft_delete_sections(list(section_ids), now)
        loose = self.session.exec(
            select(ModuleContent).where(ModuleContent.module_id == module.id, ModuleContent.deleted_at.is_(None))
        ).all()
        for content in loose:
            content.deleted_at = now
            self.session.add(content)
        module.deleted_at = now
        module.updated_at = now
        self.session.add(module)
        self.session.commit()
        return {"message": f'Module "{module_uuid}" and all associated contents were marked as deleted.'}

    @log(
        args_message=lambda a: f"Creating section in module {a['module_id']}",
        success_message=lambda r, a: f"Section [{r.id}] successfully created.",
    )
    @db_error({DbErrorCode.FOREIGN_KEY_CONSTRAINT: "Parent section does not belong to this module"})
    def create_section(self, module_id, data: Dict[str, Any]) -> ModuleSection:
        module = self.get_module(module_id)
        values = normalize_payload_for_model(ModuleSection, data, exclude=_NODE_READONLY)
        self._check_parent(module.id, values.get("parent_section_id"))
        if values.get("order") is None:
            parent_id = values.get("parent_section_id")
            same_parent = (
                ModuleSection.parent_section_id == parent_id
                if parent_id is not None
                else ModuleSection.parent_section_id.is_(None)
            )
            values["order"] = self.session.exec(
                select(func.count())
                .select_from(ModuleSection)
                .where(ModuleSection.module_id == module.id, same_parent, ModuleSection.deleted_at.is_(None))
            ).one()
        section = ModuleSection(module_id=module.id, **values)
        self.session.add(section)
        self.session.commit()
        self.session.refresh(section)
        return section

    def list_sections(self, module_id, user) -> List[ModuleSection]:
        module = ensure_module_access(self.session, user, parse_uuid(module_id, "module ID"))
        sections = self.session.exec(
            select(ModuleSection)
            .where(ModuleSection.module_id == module.id, ModuleSection.deleted_at.is_(None))
            .order_by(ModuleSection.order, ModuleSection.created_at)
        ).all()
        if user.role == RoleEnum.admin.value:
            return list(sections)
        now = utcnow()
        return [section for section in sections if is_published_now(section, now)]

    @log(
        args_message=lambda a: f"Updating section {a['section_id']}",
        success_message=lambda r, a: f"Section [{r.id}] successfully updated.",
    )
    def update_section(self, section_id, data: Dict[str, Any]) -> ModuleSection:
        section = self._get_section(section_id)
        values = normalize_payload_for_model(ModuleSection, data, exclude=_NODE_READONLY)
        if values.get("parent_section_id") is not None:
            self._check_parent(section.module_id, values["parent_section_id"], section.id)
        apply_partial_update(section, values)
        self.session.add(section)
        self.session.commit()
        self.session.refresh(section)
        return section

    @log(
        args_message=lambda a: f"Removing section {a['section_id']} direct_delete={a['direct_delete']}",
        success_message=lambda r, a: r["message"],
    )
    @db_error()
    def remove_section(self, section_id, direct_delete: bool = False) -> Dict[str, str]:
        section = self._get_section(section_id)
        section_uuid = section.id
        if direct_delete:
            self.session.delete(section)
            self.session.commit()
            return {"message": f'Module section "{section_uuid}" and all associated contents were permanently deleted.'}

        self._soft_delete_sections(section_tree_ids(self.session, [section_uuid]), utcnow())
        self.session.commit()
        return {"message": f'Module section "{section_uuid}" and all associated contents were marked as deleted.'}

"""Publishing of modules, sections and contents.

Visibility is driven by three timestamps present on every node:
``published_at`` (live since), ``to_publish_at`` (scheduled) and
``unpublished_at`` (last taken down). A node is visible when it was published
or when its schedule has passed; ``promote_scheduled`` turns elapsed schedules
into real publications so the stored state catches up with what readers see.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .. import db
from ..models import Module, ModuleContent, ModuleSection, as_naive_utc, utcnow
from ..utils.db_errors import DbErrorCode, db_error
from ..utils.log import log


logger = logging.getLogger(__name__)


def is_published_now(node, now: Optional[datetime] = None) -> bool:
    if node is None or getattr(node, "deleted_at", None) is not None:
        return False
    now = now or utcnow()
    if node.published_at is not None and node.published_at <= now:
        return True
    return node.to_publish_at is not None and node.to_publish_at <= now


def section_tree_ids(session: Session, root_ids: List[UUID], include_deleted: bool = False) -> List[UUID]:
    """Ids of the given sections and every section nested below them."""
    collected: List[UUID] = list(root_ids)
    frontier = list(root_ids)
    while frontier:
        stmt = select(ModuleSection.id).where(ModuleSection.parent_section_id.in_(frontier))
        if not include_deleted:
            stmt = stmt.where(ModuleSection.deleted_at.is_(None))
        children = session.exec(stmt).all()
        frontier = [child for child in children if child not in collected]
        collected.extend(frontier)
    return collected


def _publish_payload(to_publish_at: Optional[datetime], now: datetime) -> Dict[str, Optional[datetime]]:
    scheduled = as_naive_utc(to_publish_at)
    if scheduled is not None and scheduled > now:
        return {"published_at": None, "to_publish_at": scheduled, "unpublished_at": None}
    return {"published_at": now, "to_publish_at": None, "unpublished_at": None}


def _unpublish_payload(now: datetime) -> Dict[str, Optional[datetime]]:
    return {"published_at": None, "to_publish_at": None, "unpublished_at": now}


def _publish_message(kind: str, payload: Dict[str, Optional[datetime]]) -> str:
    if payload["to_publish_at"] is not None:
        return f"{kind} scheduled for publishing at {payload['to_publish_at'].isoformat()}"
    return f"{kind} published successfully"


class LmsPublishService:
    def __init__(self, session: Session):
        self.session = session

    def _apply(self, nodes, payload: Dict[str, Optional[datetime]], now: datetime) -> None:
        for node in nodes:
            for field, value in payload.items():
                setattr(node, field, value)
            node.updated_at = now
            self.session.add(node)

    def _cascade_sections(self, section_ids: List[UUID], payload, now: datetime) -> None:
        if not section_ids:
            return
        sections = self.session.exec(select(ModuleSection).where(ModuleSection.id.in_(section_ids))).all()
        contents = self.session.exec(
            select(ModuleContent).where(
                ModuleContent.module_section_id.in_(section_ids),
                ModuleContent.deleted_at.is_(None),
            )
        ).all()
        self._apply(sections, payload, now)
        self._apply(contents, payload, now)

    def _get_module(self, module_id: UUID) -> Module:
        return self.session.exec(select(Module).where(Module.id == module_id, Module.deleted_at.is_(None))).one()

    def _get_section(self, section_id: UUID) -> ModuleSection:
        return self.session.exec(
            select(ModuleSection).where(ModuleSection.id == section_id, ModuleSection.deleted_at.is_(None))
        ).one()

    def _get_content(self, content_id: UUID) -> ModuleContent:
        return self.session.exec(
            select(ModuleContent).where(ModuleContent.id == content_id, ModuleContent.deleted_at.is_(None))
        ).one()

    def _module_cascade(self, module: Module, payload, now: datetime) -> None:
        self._apply([module], payload, now)
        section_ids = self.session.exec(
            select(ModuleSection.id).where(ModuleSection.module_id == module.id, ModuleSection.deleted_at.is_(None))
        ).all()
        self._cascade_sections(list(section_ids), payload, now)
        # Contents attached straight to the module, outside any section
        loose = self.session.exec(
            select(ModuleContent).where(
                ModuleContent.module_id == module.id,
                ModuleContent.module_section_id.is_(None),
                ModuleContent.deleted_at.is_(None),
            )
        ).all()
        self._apply(loose, payload, now)

    @log(
        args_message=lambda a: f"Publishing module with id={a['module_id']}",
        success_message=lambda r, a: f"Successfully published module with id={a['module_id']}",
        error_message=lambda e, a: f"Failed to publish module with id={a['module_id']} | Error: {e}",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: lambda _m, a: _not_found("Module", a["module_id"])})
    def publish_module(self, module_id: UUID, to_publish_at: Optional[datetime] = None) -> Dict[str, str]:
        now = utcnow()
        payload = _publish_payload(to_publish_at, now)
        module = self._get_module(module_id)
        self._module_cascade(module, payload, now)
        self.session.commit()
        return {"message": _publish_message("Module", payload)}

    @log(
        args_message=lambda a: f"Unpublishing module with id={a['module_id']}",
        success_message=lambda r, a: f"Successfully unpublished module with id={a['module_id']}",
        error_message=lambda e, a: f"Failed to unpublish module with id={a['module_id']} | Error: {e}",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: lambda _m, a: _not_found("Module", a["module_id"])})
    def unpublish_module(self, module_id: UUID) -> Dict[str, str]:
        now = utcnow()
        module = self._get_module(module_id)
        self._module_cascade(module, _unpublish_payload(now), now)
        self.session.commit()
        return {"message": "Module unpublished successfully"}

    @log(
        args_message=lambda a: f"Publishing section with id={a['section_id']}",
        success_message=lambda r, a: f"Successfully published section with id={a['section_id']}",
        error_message=lambda e, a: f"Failed to publish section with id={a['section_id']} | Error: {e}",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: lambda _m, a: _not_found("Section", a["section_id"])})
    def publish_section(self, section_id: UUID, to_publish_at: Optional[datetime] = None) -> Dict[str, str]:
        now = utcnow()
        payload = _publish_payload(to_publish_at, now)
        section = self._get_section(section_id)
        self._cascade_sections(section_tree_ids(self.session, [section.id]), payload, now)
        self.session.commit()
        return {"message": _publish_message("Section", payload)}

    @log(
        args_message=lambda a: f"Unpublishing section with id={a['section_id']}",
        success_message=lambda r, a: f"Successfully unpublished section with id={a['section_id']}",
        error_message=lambda e, a: f"Failed to unpublish section with id={a['section_id']} | Error: {e}",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: lambda _m, a: _not_found("Section", a["section_id"])})
    def unpublish_section(self, section_id: UUID) -> Dict[str, str]:
        now = utcnow()
        section = self._get_section(section_id)
        self._cascade_sections(section_tree_ids(self.session, [section.id]), _unpublish_payload(now), now)
        self.session.commit()
        return {"message": "Section unpublished successfully"}

    @log(
        args_message=lambda a: f"Publishing content with id={a['content_id']}",
        success_message=lambda r, a: f"Successfully published content with id={a['content_id']}",
        error_message=lambda e, a: f"Failed to publish content with id={a['content_id']} | Error: {e}",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: lambda _m, a: _not_found("Content", a["content_id"])})
    def publish_content(self, content_id: UUID, to_publish_at: Optional[datetime] = None) -> Dict[str, str]:
        now = utcnow()
        payload = _publish_payload(to_publish_at, now)
        content = self._get_content(content_id)
        self._apply([content], payload, now)
        self.session.commit()
        return {"message": _publish_message("Content", payload)}

    @log(
        args_message=lambda a: f"Unpublishing content with id={a['content_id']}",
        success_message=lambda r, a: f"Successfully unpublished content with id={a['content_id']}",
        error_message=lambda e, a: f"Failed to unpublish content with id={a['content_id']} | Error: {e}",
    )
    @db_error({DbErrorCode.RECORD_NOT_FOUND: lambda _m, a: _not_found("Content", a["content_id"])})
    def unpublish_content(self, content_id: UUID) -> Dict[str, str]:
        now = utcnow()
        content = self._get_content(content_id)
        self._apply([content], _unpublish_payload(now), now)
        self.session.commit()
        return {"message": "Content unpublished successfully"}

    @log(args_message=False, success_message=lambda r, a: f"Promoted scheduled nodes: {r}")
    def promote_scheduled(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        promoted: Dict[str, int] = {}
        for label, model in (("modules", Module), ("sections", ModuleSection), ("contents", ModuleContent)):
            due = self.session.exec(
                select(model).where(
                    model.to_publish_at.is_not(None),
                    model.to_publish_at <= now,
                    model.deleted_at.is_(None),
                )
            ).all()
            for node in due:
                node.published_at = node.to_publish_at
                node.to_publish_at = None
                node.updated_at = now
                self.session.add(node)
            promoted[label] = len(due)
        self.session.commit()
        return promoted


def _not_found(kind: str, node_id) -> Exception:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{kind} with ID {node_id} not found")


def _promote_once() -> Dict[str, int]:
    with Session(db.engine) as session:
        return LmsPublishService(session).promote_scheduled()


async def run_publish_scheduler(interval_seconds: int) -> None:
    """Promote elapsed schedules every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(_promote_once)
        except SQLAlchemyError:
            logger.exception("Scheduled publish promotion failed; retrying in %ss", interval_seconds)

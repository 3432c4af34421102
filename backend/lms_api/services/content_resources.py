from typing import Any, Dict, Type
from uuid import UUID

from fastapi import HTTPException, status
from sqlmodel import Session, SQLModel, select

from ..models import ExternalUrl, FileResource, Video, utcnow
from ..utils.db_errors import DbErrorCode, db_error
from ..utils.log import log
from ..utils.sqlmodel_helpers import apply_partial_update, normalize_payload_for_model


class ContentResourceService:
    """CRUD for the one-to-one resource record attached to a module content."""

    model: Type[SQLModel]
    kind: str

    def __init__(self, session: Session):
        self.session = session

    def _not_found(self) -> HTTPException:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.kind} not found")

    @log(
        args_message=lambda a: f"Creating resource for module content {a['module_content_id']}",
        success_message=lambda r, a: f"Created resource [{r.id}] for module content {a['module_content_id']}",
    )
    @db_error(
        {
            DbErrorCode.UNIQUE_CONSTRAINT: lambda _m, a: HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"{a['self'].kind} already exists for this module content",
            ),
            DbErrorCode.FOREIGN_KEY_CONSTRAINT: "Module content not found",
        }
    )
    def create(self, module_content_id: UUID, data: Dict[str, Any], commit: bool = True):
        values = normalize_payload_for_model(self.model, data, exclude=("module_content_id", "deleted_at"))
        record = self.model(module_content_id=module_content_id, **values)
        self.session.add(record)
        if commit:
            self.session.commit()
            self.session.refresh(record)
        else:
            self.session.flush()
        return record

    def _find(self, module_content_id: UUID, include_deleted: bool = False):
        stmt = select(self.model).where(self.model.module_content_id == module_content_id)
        if not include_deleted:
            stmt = stmt.where(self.model.deleted_at.is_(None))
        return self.session.exec(stmt).first()

    @log(args_message=lambda a: f"Fetching resource for module content {a['module_content_id']}", success_message=False)
    def find_by_module_content_id(self, module_content_id: UUID):
        record = self._find(module_content_id)
        if record is None:
            raise self._not_found()
        return record

    @log(
        args_message=lambda a: f"Updating resource for module content {a['module_content_id']}",
        success_message=lambda r, a: f"Updated resource [{r.id}]",
    )
    @db_error()
    def update(self, module_content_id: UUID, data: Dict[str, Any], commit: bool = True):
        record = self._find(module_content_id)
        if record is None:
            raise self._not_found()
        apply_partial_update(record, data, exclude=("module_content_id", "deleted_at"))
        self.session.add(record)
        if commit:
            self.session.commit()
            self.session.refresh(record)
        return record

    @log(
        args_message=lambda a: (
            f"Removing resource for module content {a['module_content_id']} direct_delete={a['direct_delete']}"
        ),
    )
    @db_error()
    def remove(self, module_content_id: UUID, direct_delete: bool = False, commit: bool = True) -> Dict[str, str]:
        record = self._find(module_content_id, include_deleted=True)
        if record is None:
            raise self._not_found()
        if direct_delete:
            self.session.delete(record)
        elif record.deleted_at is None:
            record.deleted_at = utcnow()
            self.session.add(record)
        if commit:
            self.session.commit()
        return {"message": f"{self.kind} successfully removed"}


class FileResourceService(ContentResourceService):
    model = FileResource
    kind = "File resource"


class ExternalUrlService(ContentResourceService):
    model = ExternalUrl
    kind = "External URL"


class VideoService(ContentResourceService):
    model = Video
    kind = "Video"


RESOURCE_SERVICES = {
    "file": FileResourceService,
    "url": ExternalUrlService,
    "video": VideoService,
}

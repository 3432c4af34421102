from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlmodel import SQLModel

from ..db import get_session
from ..models import ContentTypeEnum
from ..schemas import MessageResponse
from ..security import require_roles
from ..services.lms_content import LmsContentService
from ..services.lms_publish import LmsPublishService


router = APIRouter(prefix="/lms/{lms_id}/contents", tags=["lms-contents"])


class ContentCreate(SQLModel):
    title: str
    content_type: ContentTypeEnum = ContentTypeEnum.lesson
    module_section_id: Optional[UUID] = None
    subtitle: Optional[str] = None
    order: int = 0
    content: Optional[Any] = None
    # Fields of the attached Assignment / Quiz / Video / ExternalUrl / FileResource
    payload: Optional[Dict[str, Any]] = None


class ContentUpdate(SQLModel):
    title: Optional[str] = None
    content_type: Optional[ContentTypeEnum] = None
    module_section_id: Optional[UUID] = None
    subtitle: Optional[str] = None
    order: Optional[int] = None
    content: Optional[Any] = None
    payload: Optional[Dict[str, Any]] = None


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_content(
    lms_id: str,
    payload: ContentCreate,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
) -> Dict[str, Any]:
    service = LmsContentService(session)
    content = service.create(lms_id, payload.model_dump(exclude_unset=True))
    return service.serialize(content, user)


@router.get("/{content_id}")
def get_content(
    lms_id: str,
    content_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor", "student")),
) -> Dict[str, Any]:
    service = LmsContentService(session)
    content = service.get_in_module(lms_id, content_id)
    return service.find_one(content.id, user)


@router.patch("/{content_id}")
def update_content(
    lms_id: str,
    content_id: str,
    payload: ContentUpdate,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
) -> Dict[str, Any]:
    service = LmsContentService(session)
    content = service.get_in_module(lms_id, content_id)
    updated = service.update(content.id, payload.model_dump(exclude_unset=True))
    return service.serialize(updated, user)


@router.delete("/{content_id}", response_model=MessageResponse)
def delete_content(
    lms_id: str,
    content_id: str,
    direct_delete: bool = False,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    service = LmsContentService(session)
    content = service.get_in_module(lms_id, content_id)
    return service.remove(content.id, direct_delete)


@router.patch("/{content_id}/publish", response_model=MessageResponse)
def publish_content(
    lms_id: str,
    content_id: str,
    to_publish_at: Optional[datetime] = None,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    content = LmsContentService(session).get_in_module(lms_id, content_id)
    return LmsPublishService(session).publish_content(content.id, to_publish_at)


@router.patch("/{content_id}/unpublish", response_model=MessageResponse)
def unpublish_content(
    lms_id: str,
    content_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    content = LmsContentService(session).get_in_module(lms_id, content_id)
    return LmsPublishService(session).unpublish_content(content.id)

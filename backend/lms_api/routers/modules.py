from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlmodel import SQLModel

from ..db import get_session
from ..models import Module, ModuleSection, RoleEnum
from ..schemas import MessageResponse
from ..security import require_roles
from ..services.lms_modules import LmsModuleService, serialize_node
from ..services.lms_publish import LmsPublishService


router = APIRouter(prefix="/lms", tags=["lms"])


class ModuleCreate(SQLModel):
    course_id: UUID
    title: str
    description: Optional[str] = None


class ModuleUpdate(SQLModel):
    title: Optional[str] = None
    description: Optional[str] = None


class SectionCreate(SQLModel):
    title: str
    parent_section_id: Optional[UUID] = None
    order: Optional[int] = None


class SectionUpdate(SQLModel):
    title: Optional[str] = None
    parent_section_id: Optional[UUID] = None
    order: Optional[int] = None


@router.post("/", response_model=Module, status_code=status.HTTP_201_CREATED)
def create_module(payload: ModuleCreate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    data = payload.model_dump(exclude_unset=True)
    return LmsModuleService(session).create_module(data.pop("course_id"), data)


@router.get("/")
def list_modules(
    course_id: Optional[str] = None,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor", "student")),
) -> List[Dict[str, Any]]:
    include_publish = user.role == RoleEnum.admin.value
    return [serialize_node(module, include_publish) for module in LmsModuleService(session).list_modules(user, course_id)]


@router.post("/publish/promote")
def promote_scheduled(session=Depends(get_session), user=Depends(require_roles("admin"))) -> Dict[str, int]:
    return LmsPublishService(session).promote_scheduled()


@router.get("/{module_id}")
def get_module_tree(
    module_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor", "student")),
) -> Dict[str, Any]:
    return LmsModuleService(session).get_module_tree(module_id, user)


@router.patch("/{module_id}", response_model=Module)
def update_module(
    module_id: str,
    payload: ModuleUpdate,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    return LmsModuleService(session).update_module(module_id, payload.model_dump(exclude_unset=True))


@router.delete("/{module_id}", response_model=MessageResponse)
def delete_module(
    module_id: str,
    direct_delete: bool = False,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    return LmsModuleService(session).remove_module(module_id, direct_delete)


@router.patch("/{module_id}/publish", response_model=MessageResponse)
def publish_module(
    module_id: str,
    to_publish_at: Optional[datetime] = None,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    module = LmsModuleService(session).get_module(module_id)
    return LmsPublishService(session).publish_module(module.id, to_publish_at)


@router.patch("/{module_id}/unpublish", response_model=MessageResponse)
def unpublish_module(module_id: str, session=Depends(get_session), user=Depends(require_roles("admin"))):
    module = LmsModuleService(session).get_module(module_id)
    return LmsPublishService(session).unpublish_module(module.id)


@router.post("/{module_id}/sections", response_model=ModuleSection, status_code=status.HTTP_201_CREATED)
def create_section(
    module_id: str,
    payload: SectionCreate,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    return LmsModuleService(session).create_section(module_id, payload.model_dump(exclude_unset=True))


@router.get("/{module_id}/sections")
def list_sections(
    module_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "mentor", "student")),
) -> List[Dict[str, Any]]:
    include_publish = user.role == RoleEnum.admin.value
    return [serialize_node(section, include_publish) for section in LmsModuleService(session).list_sections(module_id, user)]


@router.patch("/{module_id}/sections/{section_id}", response_model=ModuleSection)
def update_section(
    module_id: str,
    section_id: str,
    payload: SectionUpdate,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    service = LmsModuleService(session)
    section = service.get_section(module_id, section_id)
    return service.update_section(section.id, payload.model_dump(exclude_unset=True))


@router.delete("/{module_id}/sections/{section_id}", response_model=MessageResponse)
def delete_section(
    module_id: str,
    section_id: str,
    direct_delete: bool = False,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    service = LmsModuleService(session)
    section = service.get_section(module_id, section_id)
    return service.remove_section(section.id, direct_delete)


@router.patch("/{module_id}/sections/{section_id}/publish", response_model=MessageResponse)
def publish_section(
    module_id: str,
    section_id: str,
    to_publish_at: Optional[datetime] = None,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    section = LmsModuleService(session).get_section(module_id, section_id)
    return LmsPublishService(session).publish_section(section.id, to_publish_at)


@router.patch("/{module_id}/sections/{section_id}/unpublish", response_model=MessageResponse)
def unpublish_section(
    module_id: str,
    section_id: str,
    session=Depends(get_session),
    user=Depends(require_roles("admin")),
):
    section = LmsModuleService(session).get_section(module_id, section_id)
    return LmsPublishService(session).unpublish_section(section.id)

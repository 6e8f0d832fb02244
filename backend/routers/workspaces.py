# routers/workspaces.py - Workspaces and workspace membership
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from models import Currency, MemberRole
from routers.schemas import UserRef, user_ref
from workspace_service import WorkspaceService, get_workspace_service

router = APIRouter(prefix="/api/v1/workspaces", tags=["Workspaces"])


# ============================================================
# SCHEMAS
# ============================================================

class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=2, max_length=64, pattern=r"^[a-z0-9][a-z0-9-]*$")
    description: Optional[str] = None
    default_currency: Currency = Currency.USD


class WorkspaceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    default_currency: Optional[Currency] = None


class WorkspaceOut(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    default_currency: str
    role: Optional[str] = None
    member_count: Optional[int] = None
    board_count: Optional[int] = None
    created_at: Optional[str] = None


class MemberAdd(BaseModel):
    user_id: str
    role: MemberRole = MemberRole.CUSTOMER


class MemberOut(BaseModel):
    id: str
    workspace_id: str
    user: UserRef
    role: str
    joined_at: Optional[str] = None


def _ws_out(ws, role=None, **counts) -> dict:
    return WorkspaceOut(
        id=ws.id, name=ws.name, slug=ws.slug, description=ws.description,
        default_currency=ws.default_currency.value if hasattr(ws.default_currency, "value") else str(ws.default_currency),
        role=role.value if hasattr(role, "value") else role,
        created_at=ws.created_at.isoformat() if ws.created_at else None,
        **counts,
    ).model_dump()


def _member_out(m, user) -> dict:
    return MemberOut(
        id=m.id, workspace_id=m.workspace_id, user=user_ref(user),
        role=m.role.value if hasattr(m.role, "value") else str(m.role),
        joined_at=m.joined_at.isoformat() if m.joined_at else None,
    ).model_dump()


# ============================================================
# WORKSPACES
# ============================================================

@router.get("")
async def list_workspaces(service: WorkspaceService = Depends(get_workspace_service)):
    return [_ws_out(ws, role) for ws, role in await service.list_workspaces()]


@router.post("", status_code=201)
async def create_workspace(data: WorkspaceCreate, service: WorkspaceService = Depends(get_workspace_service)):
    ws = await service.create_workspace(
        data.name, data.slug, description=data.description, default_currency=data.default_currency,
    )
    return _ws_out(ws, MemberRole.OWNER_ADMIN)


@router.get("/{workspace_id}")
async def get_workspace(workspace_id: str, service: WorkspaceService = Depends(get_workspace_service)):
    view = await service.get_workspace(workspace_id)
    return _ws_out(view.workspace, view.role, member_count=view.member_count, board_count=view.board_count)


@router.patch("/{workspace_id}")
async def update_workspace(
    workspace_id: str, data: WorkspaceUpdate,
    service: WorkspaceService = Depends(get_workspace_service),
):
    ws = await service.update_workspace(workspace_id, data.model_dump(exclude_unset=True))
    return _ws_out(ws)


# ============================================================
# MEMBERS
# ============================================================

@router.get("/{workspace_id}/members")
async def list_members(workspace_id: str, service: WorkspaceService = Depends(get_workspace_service)):
    return [_member_out(m, m.user) for m in await service.list_members(workspace_id)]


@router.post("/{workspace_id}/members", status_code=201)
async def add_member(workspace_id: str, data: MemberAdd, service: WorkspaceService = Depends(get_workspace_service)):
    member, user = await service.add_member(workspace_id, data.user_id, role=data.role)
    return _member_out(member, user)


@router.delete("/{workspace_id}/members/{user_id}")
async def remove_member(workspace_id: str, user_id: str, service: WorkspaceService = Depends(get_workspace_service)):
    await service.remove_member(workspace_id, user_id)
    return {"status": "removed"}

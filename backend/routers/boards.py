# routers/boards.py - Boards and board membership
from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from board_service import BoardService, get_board_service
from models import BoardType
from routers.schemas import BoardOut, ColumnOut, GroupOut, board_out, column_out, group_out

router = APIRouter(prefix="/api/v1/boards", tags=["Boards"])


# ============================================================
# SCHEMAS
# ============================================================

class BoardCreate(BaseModel):
    workspace_id: str
    name: str = Field(..., min_length=1, max_length=200)
    board_type: BoardType = BoardType.GENERAL
    description: Optional[str] = None
    color: Optional[str] = None
    is_public: bool = False


class BoardUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    color: Optional[str] = None
    is_public: Optional[bool] = None


class BoardMemberAdd(BaseModel):
    user_id: str
    can_edit: bool = False


class BoardMemberOut(BaseModel):
    id: str
    board_id: str
    user_id: str
    can_edit: bool


class BoardDetailOut(BoardOut):
    can_edit: bool
    permission: str
    columns: List[ColumnOut] = []
    groups: List[GroupOut] = []
    members: List[BoardMemberOut] = []


def _member_out(m) -> BoardMemberOut:
    return BoardMemberOut(id=m.id, board_id=m.board_id, user_id=m.user_id, can_edit=bool(m.can_edit))


# ============================================================
# BOARDS
# ============================================================

@router.get("/workspace/{workspace_id}")
async def list_boards(workspace_id: str, service: BoardService = Depends(get_board_service)):
    rows = await service.list_boards(workspace_id)
    return [board_out(board, task_count=count).model_dump() for board, count in rows]


@router.get("/{board_id}")
async def get_board(board_id: str, service: BoardService = Depends(get_board_service)):
    view = await service.get_board(board_id)
    return BoardDetailOut(
        **board_out(view.board).model_dump(),
        can_edit=view.permission.value == "edit",
        permission=view.permission.value,
        columns=[column_out(c) for c in view.columns],
        groups=[group_out(g, view.tasks_by_group.get(g.id)) for g in view.groups],
        members=[_member_out(m) for m in view.members],
    ).model_dump()


@router.post("", status_code=201)
async def create_board(data: BoardCreate, service: BoardService = Depends(get_board_service)):
    board = await service.create_board(
        data.workspace_id, data.name, board_type=data.board_type,
        description=data.description, color=data.color, is_public=data.is_public,
    )
    return board_out(board).model_dump()


@router.patch("/{board_id}")
async def update_board(board_id: str, data: BoardUpdate, service: BoardService = Depends(get_board_service)):
    board = await service.update_board(board_id, data.model_dump(exclude_unset=True))
    return board_out(board).model_dump()


@router.delete("/{board_id}")
async def delete_board(board_id: str, service: BoardService = Depends(get_board_service)):
    await service.delete_board(board_id)
    return {"status": "deleted"}


# ============================================================
# MEMBERS
# ============================================================

@router.post("/{board_id}/members", status_code=201)
async def add_board_member(board_id: str, data: BoardMemberAdd, service: BoardService = Depends(get_board_service)):
    member = await service.add_member(board_id, data.user_id, can_edit=data.can_edit)
    return _member_out(member).model_dump()


@router.delete("/{board_id}/members/{user_id}")
async def remove_board_member(board_id: str, user_id: str, service: BoardService = Depends(get_board_service)):
    await service.remove_member(board_id, user_id)
    return {"status": "removed"}

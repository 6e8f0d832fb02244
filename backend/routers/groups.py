# routers/groups.py - Task groups within a board
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from board_service import BoardService, get_board_service
from routers.schemas import group_out

router = APIRouter(prefix="/api/v1/groups", tags=["Groups"])


class GroupCreate(BaseModel):
    board_id: str
    name: str = Field(..., min_length=1, max_length=200)
    color: Optional[str] = None


class GroupUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    color: Optional[str] = None
    collapsed: Optional[bool] = None


class GroupReorder(BaseModel):
    """Every active group of the board, in the new order"""
    board_id: str
    group_ids: List[str]


@router.post("", status_code=201)
async def create_group(data: GroupCreate, service: BoardService = Depends(get_board_service)):
    group = await service.create_group(data.board_id, data.name, color=data.color)
    return group_out(group).model_dump()


@router.post("/reorder")
async def reorder_groups(data: GroupReorder, service: BoardService = Depends(get_board_service)):
    ordered = await service.reorder_groups(data.board_id, data.group_ids)
    return {"board_id": data.board_id, "group_ids": ordered}


@router.patch("/{group_id}")
async def update_group(group_id: str, data: GroupUpdate, service: BoardService = Depends(get_board_service)):
    group = await service.update_group(group_id, data.model_dump(exclude_unset=True))
    return group_out(group).model_dump()


@router.delete("/{group_id}")
async def delete_group(group_id: str, service: BoardService = Depends(get_board_service)):
    await service.delete_group(group_id)
    return {"status": "deleted"}

# routers/columns.py - Typed board columns
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from board_service import BoardService, get_board_service
from models import FieldType
from routers.schemas import column_out

router = APIRouter(prefix="/api/v1/columns", tags=["Columns"])


class ColumnCreate(BaseModel):
    board_id: str
    name: str = Field(..., min_length=1, max_length=100)
    field_type: FieldType = FieldType.TEXT
    settings: Optional[Dict[str, Any]] = None
    width: Optional[int] = Field(None, ge=40, le=1000)


class ColumnUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    settings: Optional[Dict[str, Any]] = None
    width: Optional[int] = Field(None, ge=40, le=1000)
    is_visible: Optional[bool] = None
    is_required: Optional[bool] = None


class ColumnReorder(BaseModel):
    board_id: str
    column_ids: List[str]


@router.post("", status_code=201)
async def create_column(data: ColumnCreate, service: BoardService = Depends(get_board_service)):
    column = await service.create_column(
        data.board_id, data.name, field_type=data.field_type, settings=data.settings, width=data.width,
    )
    return column_out(column).model_dump()


@router.post("/reorder")
async def reorder_columns(data: ColumnReorder, service: BoardService = Depends(get_board_service)):
    ordered = await service.reorder_columns(data.board_id, data.column_ids)
    return {"board_id": data.board_id, "column_ids": ordered}


@router.patch("/{column_id}")
async def update_column(column_id: str, data: ColumnUpdate, service: BoardService = Depends(get_board_service)):
    column = await service.update_column(column_id, data.model_dump(exclude_unset=True))
    return column_out(column).model_dump()


@router.delete("/{column_id}")
async def delete_column(column_id: str, service: BoardService = Depends(get_board_service)):
    await service.delete_column(column_id)
    return {"status": "deleted"}

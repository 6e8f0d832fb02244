# routers/schemas.py - Response models shared by the board, group, column and task routers
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


def _enum(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


class UserRef(BaseModel):
    id: str
    name: str
    email: str
    avatar_url: Optional[str] = None


class ColumnOut(BaseModel):
    id: str
    board_id: str
    name: str
    field_type: str
    settings: Optional[Dict[str, Any]] = None
    width: Optional[int] = None
    is_visible: bool
    is_required: bool
    position: int


class SubTaskOut(BaseModel):
    id: str
    task_id: str
    name: str
    is_completed: bool
    position: int


class TaskOut(BaseModel):
    id: str
    group_id: str
    name: str
    position: int
    created_by_id: str
    field_values: Dict[str, Any] = {}
    assignees: List[UserRef] = []
    sub_tasks: List[SubTaskOut] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class GroupOut(BaseModel):
    id: str
    board_id: str
    name: str
    color: Optional[str] = None
    collapsed: bool
    position: int
    tasks: List[TaskOut] = []


class BoardOut(BaseModel):
    id: str
    workspace_id: str
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    board_type: str
    is_public: bool
    created_by_id: str
    task_count: Optional[int] = None
    created_at: Optional[str] = None


def user_ref(u) -> UserRef:
    return UserRef(id=u.id, name=u.name or "", email=u.email, avatar_url=u.avatar_url)


def column_out(c) -> ColumnOut:
    return ColumnOut(
        id=c.id, board_id=c.board_id, name=c.name, field_type=_enum(c.field_type),
        settings=c.settings, width=c.width,
        is_visible=bool(c.is_visible), is_required=bool(c.is_required),
        position=c.position,
    )


def subtask_out(s) -> SubTaskOut:
    return SubTaskOut(id=s.id, task_id=s.task_id, name=s.name, is_completed=bool(s.is_completed), position=s.position)


def task_out(t, detailed: bool = True) -> TaskOut:
    """`detailed` requires field_values, assignments.user and sub_tasks to be loaded"""
    out = TaskOut(
        id=t.id, group_id=t.group_id, name=t.name, position=t.position,
        created_by_id=t.created_by_id,
        created_at=_iso(t.created_at), updated_at=_iso(t.updated_at),
    )
    if detailed:
        out.field_values = {fv.column_id: fv.value for fv in t.field_values}
        out.assignees = [user_ref(a.user) for a in t.assignments]
        out.sub_tasks = [subtask_out(s) for s in t.sub_tasks]
    return out


def group_out(g, tasks=None) -> GroupOut:
    return GroupOut(
        id=g.id, board_id=g.board_id, name=g.name, color=g.color,
        collapsed=bool(g.collapsed), position=g.position,
        tasks=[task_out(t) for t in (tasks or [])],
    )


def board_out(b, task_count: Optional[int] = None) -> BoardOut:
    return BoardOut(
        id=b.id, workspace_id=b.workspace_id, name=b.name, description=b.description,
        color=b.color, board_type=_enum(b.board_type), is_public=bool(b.is_public),
        created_by_id=b.created_by_id, task_count=task_count, created_at=_iso(b.created_at),
    )

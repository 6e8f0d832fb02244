# routers/tasks.py - Tasks, sub-tasks, field values, assignments and comments
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from routers.schemas import (
    SubTaskOut, TaskOut, UserRef,
    subtask_out, task_out, user_ref,
)
from task_service import TaskService, get_task_service

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])


# ============================================================
# SCHEMAS
# ============================================================

class TaskCreate(BaseModel):
    group_id: str
    name: str = Field(..., min_length=1, max_length=500)
    field_values: Dict[str, Any] = Field(default_factory=dict)


class TaskUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=500)
    group_id: Optional[str] = None  # moves the task to the end of this group


class TaskReorder(BaseModel):
    """Every active task of the group, in the new order"""
    group_id: str
    task_ids: List[str]


class SubTaskReorder(BaseModel):
    subtask_ids: List[str]


class FieldValueUpdate(BaseModel):
    value: Any = None


class AssignRequest(BaseModel):
    user_id: str


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class CommentOut(BaseModel):
    id: str
    task_id: str
    content: str
    user: Optional[UserRef] = None
    created_at: Optional[str] = None


class ActivityOut(BaseModel):
    id: str
    action: str
    entity_type: str
    entity_id: str
    details: Dict[str, Any] = {}
    user: Optional[UserRef] = None
    created_at: Optional[str] = None


class TaskDetailOut(TaskOut):
    board_id: str
    can_edit: bool
    comments: List[CommentOut] = []
    activity: List[ActivityOut] = []


class SubTaskCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=500)


class SubTaskUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=500)
    is_completed: Optional[bool] = None


def _comment_out(c, author=None) -> CommentOut:
    author = author or c.user
    return CommentOut(
        id=c.id, task_id=c.task_id, content=c.content,
        user=user_ref(author) if author else None,
        created_at=c.created_at.isoformat() if c.created_at else None,
    )


def _activity_out(a) -> ActivityOut:
    return ActivityOut(
        id=a.id, action=a.action, entity_type=a.entity_type, entity_id=a.entity_id,
        details=a.details or {}, user=user_ref(a.user) if a.user else None,
        created_at=a.created_at.isoformat() if a.created_at else None,
    )


# ============================================================
# TASKS
# ============================================================

@router.post("", status_code=201)
async def create_task(data: TaskCreate, service: TaskService = Depends(get_task_service)):
    task = await service.create_task(data.group_id, data.name, field_values=data.field_values)
    out = task_out(task, detailed=False)
    out.field_values = dict(data.field_values)
    return out.model_dump()


@router.post("/reorder")
async def reorder_tasks(data: TaskReorder, service: TaskService = Depends(get_task_service)):
    ordered = await service.reorder_tasks(data.group_id, data.task_ids)
    return {"group_id": data.group_id, "task_ids": ordered}


@router.get("/{task_id}")
async def get_task(task_id: str, service: TaskService = Depends(get_task_service)):
    view = await service.get_task(task_id)
    return TaskDetailOut(
        **task_out(view.task).model_dump(),
        board_id=view.board_id,
        can_edit=view.permission.value == "edit",
        comments=[_comment_out(c) for c in view.task.comments],
        activity=[_activity_out(a) for a in view.activity],
    ).model_dump()


@router.patch("/{task_id}")
async def update_task(task_id: str, data: TaskUpdate, service: TaskService = Depends(get_task_service)):
    task = await service.update_task(task_id, data.model_dump(exclude_unset=True))
    return task_out(task, detailed=False).model_dump()


@router.delete("/{task_id}")
async def delete_task(task_id: str, service: TaskService = Depends(get_task_service)):
    await service.delete_task(task_id)
    return {"status": "deleted"}


@router.patch("/{task_id}/field/{column_id}")
async def set_field_value(
    task_id: str, column_id: str, data: FieldValueUpdate,
    service: TaskService = Depends(get_task_service),
):
    field_value = await service.set_field_value(task_id, column_id, data.value)
    return {"task_id": task_id, "column_id": column_id, "value": field_value.value}


# ============================================================
# ASSIGNMENTS
# ============================================================

@router.post("/{task_id}/assign", status_code=201)
async def assign_user(task_id: str, data: AssignRequest, service: TaskService = Depends(get_task_service)):
    assignment = await service.assign(task_id, data.user_id)
    return {"id": assignment.id, "task_id": task_id, "user_id": assignment.user_id}


@router.delete("/{task_id}/assign/{user_id}")
async def unassign_user(task_id: str, user_id: str, service: TaskService = Depends(get_task_service)):
    await service.unassign(task_id, user_id)
    return {"status": "unassigned"}


# ============================================================
# COMMENTS
# ============================================================

@router.post("/{task_id}/comments", status_code=201)
async def add_comment(task_id: str, data: CommentCreate, service: TaskService = Depends(get_task_service)):
    comment = await service.add_comment(task_id, data.content)
    author = UserRef(id=service.actor.id, name=service.actor.name, email=service.actor.email)
    return CommentOut(
        id=comment.id, task_id=task_id, content=comment.content, user=author,
        created_at=comment.created_at.isoformat() if comment.created_at else None,
    ).model_dump()


@router.delete("/{task_id}/comments/{comment_id}")
async def delete_comment(task_id: str, comment_id: str, service: TaskService = Depends(get_task_service)):
    await service.delete_comment(task_id, comment_id)
    return {"status": "deleted"}


# ============================================================
# SUB-TASKS
# ============================================================

@router.post("/{task_id}/subtasks", status_code=201)
async def create_subtask(task_id: str, data: SubTaskCreate, service: TaskService = Depends(get_task_service)):
    subtask = await service.create_subtask(task_id, data.name)
    return subtask_out(subtask).model_dump()


@router.post("/{task_id}/subtasks/reorder")
async def reorder_subtasks(task_id: str, data: SubTaskReorder, service: TaskService = Depends(get_task_service)):
    ordered = await service.reorder_subtasks(task_id, data.subtask_ids)
    return {"task_id": task_id, "subtask_ids": ordered}


@router.patch("/{task_id}/subtasks/{subtask_id}", response_model=SubTaskOut)
async def update_subtask(
    task_id: str, subtask_id: str, data: SubTaskUpdate,
    service: TaskService = Depends(get_task_service),
):
    subtask = await service.update_subtask(task_id, subtask_id, data.model_dump(exclude_unset=True))
    return subtask_out(subtask)


@router.delete("/{task_id}/subtasks/{subtask_id}")
async def delete_subtask(task_id: str, subtask_id: str, service: TaskService = Depends(get_task_service)):
    await service.delete_subtask(task_id, subtask_id)
    return {"status": "deleted"}

# task_service.py - Tasks, sub-tasks, field values, assignments and comments
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from access import Permission, Target
from auth import CurrentUser, get_current_user
from database import get_db_session
from errors import Conflict, ConflictingPosition, Forbidden, NotFound
from events import EventEmitter, NotificationSpec, get_event_emitter
from facade import BaseFacade, apply_changes
from models import (
    ActivityLog, BoardColumn, Comment, NotificationType, SubTask, Task,
    TaskAssignment, TaskFieldValue, User,
)
from ordering import Scope

logger = logging.getLogger("workboard.tasks")

TASK_FIELDS = ("name",)
SUBTASK_FIELDS = ("name", "is_completed")
RECENT_ACTIVITY_LIMIT = 50


@dataclass
class TaskView:
    task: Task
    board_id: str
    permission: Permission
    activity: List[ActivityLog]


def _task_link(board_id: str, task_id: str) -> str:
    return f"/boards/{board_id}?task={task_id}"


class TaskService(BaseFacade):

    # ----------------------------------------------------------------- tasks

    async def get_task(self, task_id: str) -> TaskView:
        decision = await self.resolver.require(self.actor_id, Target.task(task_id), Permission.READ_ONLY)
        task = (await self.db.execute(
            select(Task)
            .options(
                selectinload(Task.sub_tasks),
                selectinload(Task.field_values),
                selectinload(Task.assignments).selectinload(TaskAssignment.user),
                selectinload(Task.comments).selectinload(Comment.user),
            )
            .where(Task.id == task_id)
        )).scalar_one()
        activity = (await self.db.execute(
            select(ActivityLog)
            .options(selectinload(ActivityLog.user))
            .where(ActivityLog.task_id == task_id)
            .order_by(ActivityLog.created_at.desc())
            .limit(RECENT_ACTIVITY_LIMIT)
        )).scalars().all()
        return TaskView(task=task, board_id=decision.board_id, permission=decision.permission, activity=list(activity))

    async def create_task(self, group_id: str, name: str, field_values: Optional[Dict[str, Any]] = None) -> Task:
        scope = Scope.tasks_of(group_id)
        await self.resolver.require(self.actor_id, Target.group(group_id), lock=False)
        async with self.ordering.serialized(scope):
            decision = await self.resolver.require(self.actor_id, Target.group(group_id))
            task = Task(
                group_id=group_id, created_by_id=self.actor_id, name=name,
                position=await self.ordering.append(scope),
            )
            self.db.add(task)
            await self.db.flush()
            for column_id, value in (field_values or {}).items():
                await self._upsert_value(task.id, decision.board_id, column_id, value)
            await self.db.commit()

        logger.info(f"Task {task.id[:8]} created in group {group_id[:8]} @ {task.position}")
        await self._emit(
            "task.created", board_id=decision.board_id, task_id=task.id,
            entity_type="task", entity_id=task.id,
            details={"name": name, "group_id": group_id, "position": task.position},
        )
        return task

    async def update_task(self, task_id: str, changes: Dict[str, Any]) -> Task:
        """Rename and/or move a task; a new `group_id` moves it to the end of that group"""
        task = await self._get(Task, task_id, "task")
        source_group_id = task.group_id
        destination_group_id = changes.get("group_id")

        if destination_group_id and destination_group_id != source_group_id:
            scopes = (Scope.tasks_of(source_group_id), Scope.tasks_of(destination_group_id))
            await self.resolver.require(self.actor_id, Target.task(task_id), lock=False)
            await self.resolver.require(self.actor_id, Target.group(destination_group_id), lock=False)
            async with self.ordering.serialized(*scopes):
                source = await self.resolver.require(self.actor_id, Target.task(task_id))
                destination = await self.resolver.require(self.actor_id, Target.group(destination_group_id))
                current_group_id = (await self.db.execute(
                    select(Task.group_id).where(Task.id == task_id)
                )).scalar_one()
                if current_group_id != source_group_id:
                    raise ConflictingPosition(str(scopes[0]), "Task was moved concurrently, retry")

                position = await self.ordering.move_across_scope(task_id, scopes[1])
                renamed = apply_changes(task, changes, TASK_FIELDS)
                await self.db.commit()
            await self.db.refresh(task)

            details = {
                "from_group_id": source_group_id,
                "to_group_id": destination_group_id,
                "position": position,
            }
            await self._emit(
                "task.moved", board_id=destination.board_id, task_id=task_id,
                entity_type="task", entity_id=task_id, details=details,
            )
            if source.board_id != destination.board_id:
                await self._emit(
                    "task.moved", board_id=source.board_id, task_id=task_id,
                    entity_type="task", entity_id=task_id, details=details, log_activity=False,
                )
            if renamed:
                await self._emit(
                    "task.updated", board_id=destination.board_id, task_id=task_id,
                    entity_type="task", entity_id=task_id, details={"fields": renamed},
                )
            return task

        decision = await self.resolver.require(self.actor_id, Target.task(task_id))
        changed = apply_changes(task, changes, TASK_FIELDS)
        await self.db.commit()

        await self._emit(
            "task.updated", board_id=decision.board_id, task_id=task_id,
            entity_type="task", entity_id=task_id, details={"fields": changed},
        )
        return task

    async def reorder_tasks(self, group_id: str, task_ids: Sequence[str]) -> List[str]:
        scope = Scope.tasks_of(group_id)
        await self.resolver.require(self.actor_id, Target.group(group_id), lock=False)
        async with self.ordering.serialized(scope):
            decision = await self.resolver.require(self.actor_id, Target.group(group_id))
            ordered = await self.ordering.reorder(scope, task_ids)
            await self.db.commit()

        await self._emit(
            "task.reordered", board_id=decision.board_id, entity_type="group", entity_id=group_id,
            details={"order": ordered},
        )
        return ordered

    async def delete_task(self, task_id: str) -> None:
        decision = await self.resolver.require(self.actor_id, Target.task(task_id))
        task = await self._get(Task, task_id, "task")
        task.is_active = False
        await self.db.commit()

        await self._emit(
            "task.deleted", board_id=decision.board_id, task_id=task_id,
            entity_type="task", entity_id=task_id, details={"name": task.name},
        )

    # ---------------------------------------------------------- field values

    async def set_field_value(self, task_id: str, column_id: str, value: Any) -> TaskFieldValue:
        decision = await self.resolver.require(self.actor_id, Target.task(task_id))
        field_value = await self._upsert_value(task_id, decision.board_id, column_id, value)
        await self.db.commit()

        await self._emit(
            "task.field_updated", board_id=decision.board_id, task_id=task_id,
            entity_type="task", entity_id=task_id,
            details={"column_id": column_id, "value": value},
        )
        return field_value

    async def _upsert_value(self, task_id: str, board_id: str, column_id: str, value: Any) -> TaskFieldValue:
        column = await self.db.get(BoardColumn, column_id)
        if column is None or column.board_id != board_id:
            raise NotFound("column", column_id)

        field_value = (await self.db.execute(
            select(TaskFieldValue).where(TaskFieldValue.task_id == task_id, TaskFieldValue.column_id == column_id)
        )).scalar_one_or_none()
        if field_value is None:
            field_value = TaskFieldValue(task_id=task_id, column_id=column_id, value=value)
            self.db.add(field_value)
        else:
            field_value.value = value
        return field_value

    # ----------------------------------------------------------- assignments

    async def assign(self, task_id: str, user_id: str) -> TaskAssignment:
        decision = await self.resolver.require(self.actor_id, Target.task(task_id))
        task = await self._get(Task, task_id, "task")
        user = await self._get(User, user_id, "user")

        existing = (await self.db.execute(
            select(TaskAssignment.id).where(TaskAssignment.task_id == task_id, TaskAssignment.user_id == user_id)
        )).scalar_one_or_none()
        if existing is not None:
            raise Conflict("User already assigned to this task")

        assignment = TaskAssignment(task_id=task_id, user_id=user_id)
        self.db.add(assignment)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise Conflict("User already assigned to this task")

        await self._emit(
            "task.assigned", board_id=decision.board_id, task_id=task_id,
            entity_type="task", entity_id=task_id, details={"user_id": user_id},
            notify=[NotificationSpec(
                user_id=user.id,
                notification_type=NotificationType.TASK_ASSIGNED,
                title="New task assignment",
                message=f"You were assigned to \"{task.name}\"",
                link=_task_link(decision.board_id, task_id),
            )],
        )
        return assignment

    async def unassign(self, task_id: str, user_id: str) -> None:
        decision = await self.resolver.require(self.actor_id, Target.task(task_id))
        assignment = (await self.db.execute(
            select(TaskAssignment).where(TaskAssignment.task_id == task_id, TaskAssignment.user_id == user_id)
        )).scalar_one_or_none()
        if assignment is None:
            raise NotFound("assignment", user_id)

        await self.db.delete(assignment)
        await self.db.commit()

        await self._emit(
            "task.unassigned", board_id=decision.board_id, task_id=task_id,
            entity_type="task", entity_id=task_id, details={"user_id": user_id},
        )

    # -------------------------------------------------------------- comments

    async def add_comment(self, task_id: str, content: str) -> Comment:
        """Read access is enough to comment"""
        decision = await self.resolver.require(self.actor_id, Target.task(task_id), Permission.READ_ONLY)
        task = await self._get(Task, task_id, "task")

        comment = Comment(task_id=task_id, user_id=self.actor_id, content=content)
        self.db.add(comment)
        await self.db.commit()

        assignee_ids = (await self.db.execute(
            select(TaskAssignment.user_id).where(TaskAssignment.task_id == task_id)
        )).scalars().all()
        author = self.actor.name or self.actor.email
        notify = [
            NotificationSpec(
                user_id=user_id,
                notification_type=NotificationType.TASK_COMMENT,
                title="New comment",
                message=f"{author} commented on \"{task.name}\"",
                link=_task_link(decision.board_id, task_id),
            )
            for user_id in assignee_ids
        ]
        await self._emit(
            "task.commented", board_id=decision.board_id, task_id=task_id,
            entity_type="comment", entity_id=comment.id, details={"preview": content[:100]},
            notify=notify,
        )
        return comment

    async def delete_comment(self, task_id: str, comment_id: str) -> None:
        decision = await self.resolver.require(self.actor_id, Target.task(task_id), Permission.READ_ONLY)
        comment = await self.db.get(Comment, comment_id)
        if comment is None or comment.task_id != task_id:
            raise NotFound("comment", comment_id)
        if comment.user_id != self.actor_id:
            raise Forbidden("Can only delete your own comments")

        await self.db.delete(comment)
        await self.db.commit()

        await self._emit(
            "task.comment_deleted", board_id=decision.board_id, task_id=task_id,
            entity_type="comment", entity_id=comment_id,
        )

    # ------------------------------------------------------------- sub-tasks

    async def create_subtask(self, task_id: str, name: str) -> SubTask:
        scope = Scope.subtasks_of(task_id)
        await self.resolver.require(self.actor_id, Target.task(task_id), lock=False)
        async with self.ordering.serialized(scope):
            decision = await self.resolver.require(self.actor_id, Target.task(task_id))
            subtask = SubTask(task_id=task_id, name=name, position=await self.ordering.append(scope))
            self.db.add(subtask)
            await self.db.commit()

        await self._emit(
            "subtask.created", board_id=decision.board_id, task_id=task_id,
            entity_type="subtask", entity_id=subtask.id,
            details={"name": name, "position": subtask.position},
        )
        return subtask

    async def update_subtask(self, task_id: str, subtask_id: str, changes: Dict[str, Any]) -> SubTask:
        decision = await self.resolver.require(self.actor_id, Target.subtask(subtask_id))
        subtask = await self._subtask_of(task_id, subtask_id)
        changed = apply_changes(subtask, changes, SUBTASK_FIELDS)
        await self.db.commit()

        await self._emit(
            "subtask.updated", board_id=decision.board_id, task_id=task_id,
            entity_type="subtask", entity_id=subtask_id, details={"fields": changed},
        )
        return subtask

    async def reorder_subtasks(self, task_id: str, subtask_ids: Sequence[str]) -> List[str]:
        scope = Scope.subtasks_of(task_id)
        await self.resolver.require(self.actor_id, Target.task(task_id), lock=False)
        async with self.ordering.serialized(scope):
            decision = await self.resolver.require(self.actor_id, Target.task(task_id))
            ordered = await self.ordering.reorder(scope, subtask_ids)
            await self.db.commit()

        await self._emit(
            "subtask.reordered", board_id=decision.board_id, task_id=task_id,
            entity_type="task", entity_id=task_id, details={"order": ordered},
        )
        return ordered

    async def delete_subtask(self, task_id: str, subtask_id: str) -> None:
        decision = await self.resolver.require(self.actor_id, Target.subtask(subtask_id))
        subtask = await self._subtask_of(task_id, subtask_id)
        await self.db.delete(subtask)
        await self.db.commit()

        await self._emit(
            "subtask.deleted", board_id=decision.board_id, task_id=task_id,
            entity_type="subtask", entity_id=subtask_id,
        )

    async def _subtask_of(self, task_id: str, subtask_id: str) -> SubTask:
        subtask = await self.db.get(SubTask, subtask_id)
        if subtask is None or subtask.task_id != task_id:
            raise NotFound("subtask", subtask_id)
        return subtask


def get_task_service(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    emitter: EventEmitter = Depends(get_event_emitter),
) -> TaskService:
    return TaskService(db, user, emitter=emitter)

# board_service.py - Boards, board members, groups and columns
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import Depends
from sqlalchemy import select, func, delete, or_, exists
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from access import Permission, Target
from auth import CurrentUser, get_current_user
from database import get_db_session
from errors import NotFound
from events import EventEmitter, NotificationSpec, get_event_emitter
from facade import BaseFacade, apply_changes
from models import (
    Board, BoardMember, BoardColumn, BoardType, FieldType, Group, Task,
    TaskAssignment, TaskFieldValue, User, MemberRole, NotificationType,
)
from ordering import Scope

logger = logging.getLogger("workboard.boards")


def _status(*labels: Tuple[str, str]) -> dict:
    return {"options": [
        {"id": str(i), "label": label, "color": color}
        for i, (label, color) in enumerate(labels, start=1)
    ]}


# Columns created with every new board, by board type
DEFAULT_COLUMNS = {
    BoardType.GENERAL: [
        ("Status", FieldType.STATUS, _status(
            ("To Do", "#6B7280"), ("In Progress", "#F59E0B"), ("Done", "#10B981"))),
        ("Person", FieldType.PERSON, None),
        ("Due Date", FieldType.DATE, None),
    ],
    BoardType.PROPERTY: [
        ("Status", FieldType.STATUS, _status(
            ("Searching", "#6B7280"), ("Viewing", "#3B82F6"),
            ("Negotiating", "#F59E0B"), ("Purchased", "#10B981"))),
        ("Purchase Price", FieldType.MONEY, None),
        ("Monthly Rent", FieldType.MONEY, None),
        ("Tenant", FieldType.TEXT, None),
        ("Occupancy", FieldType.STATUS, _status(
            ("Vacant", "#EF4444"), ("Occupied", "#10B981"), ("Renovation", "#F59E0B"))),
        ("Rented Since", FieldType.DATE, None),
        ("Total Income", FieldType.MONEY, None),
        ("Notes", FieldType.TEXT, None),
    ],
    BoardType.PROJECT: [
        ("Status", FieldType.STATUS, _status(
            ("Not Started", "#6B7280"), ("In Progress", "#3B82F6"),
            ("Review", "#F59E0B"), ("Completed", "#10B981"))),
        ("Assignee", FieldType.PERSON, None),
        ("Priority", FieldType.STATUS, _status(
            ("Low", "#6B7280"), ("Medium", "#F59E0B"), ("High", "#EF4444"))),
        ("Due Date", FieldType.DATE, None),
        ("Budget", FieldType.MONEY, None),
    ],
    BoardType.CRM: [
        ("Status", FieldType.STATUS, _status(
            ("Lead", "#6B7280"), ("Qualified", "#3B82F6"), ("Proposal", "#F59E0B"),
            ("Won", "#10B981"), ("Lost", "#EF4444"))),
        ("Contact", FieldType.PERSON, None),
        ("Email", FieldType.EMAIL, None),
        ("Phone", FieldType.PHONE, None),
        ("Value", FieldType.MONEY, None),
        ("Last Contact", FieldType.DATE, None),
    ],
}

DEFAULT_GROUP_NAME = "New Group"

BOARD_FIELDS = ("name", "description", "color", "is_public")
GROUP_FIELDS = ("name", "color", "collapsed")
COLUMN_FIELDS = ("name", "settings", "width", "is_visible", "is_required")


@dataclass
class BoardView:
    """A board with everything needed to render it"""
    board: Board
    permission: Permission
    columns: List[BoardColumn]
    groups: List[Group]
    tasks_by_group: Dict[str, List[Task]] = field(default_factory=dict)
    members: List[BoardMember] = field(default_factory=list)


class BoardService(BaseFacade):

    # ---------------------------------------------------------------- boards

    async def list_boards(self, workspace_id: str) -> List[Tuple[Board, int]]:
        """Active boards of a workspace with their active task counts"""
        decision = await self.resolver.require_workspace(self.actor_id, workspace_id, Permission.READ_ONLY)

        task_count = (
            select(func.count(Task.id))
            .select_from(Task)
            .join(Group, Group.id == Task.group_id)
            .where(Group.board_id == Board.id, Group.is_active.is_(True), Task.is_active.is_(True))
            .correlate(Board)
            .scalar_subquery()
        )
        stmt = (
            select(Board, task_count)
            .where(Board.workspace_id == workspace_id, Board.is_active.is_(True))
            .order_by(Board.created_at.desc())
        )
        if decision.role == MemberRole.CUSTOMER:
            is_member = exists().where(BoardMember.board_id == Board.id, BoardMember.user_id == self.actor_id)
            stmt = stmt.where(or_(Board.is_public.is_(True), is_member))

        rows = (await self.db.execute(stmt)).all()
        return [(board, count or 0) for board, count in rows]

    async def get_board(self, board_id: str) -> BoardView:
        decision = await self.resolver.require(self.actor_id, Target.board(board_id), Permission.READ_ONLY)
        board = await self._get(Board, board_id, "board")

        columns = (await self.db.execute(
            select(BoardColumn).where(BoardColumn.board_id == board_id).order_by(BoardColumn.position)
        )).scalars().all()
        groups = (await self.db.execute(
            select(Group)
            .where(Group.board_id == board_id, Group.is_active.is_(True))
            .order_by(Group.position)
        )).scalars().all()
        tasks = (await self.db.execute(
            select(Task)
            .options(
                selectinload(Task.field_values),
                selectinload(Task.assignments).selectinload(TaskAssignment.user),
                selectinload(Task.sub_tasks),
            )
            .where(Task.group_id.in_([g.id for g in groups]), Task.is_active.is_(True))
            .order_by(Task.position)
        )).scalars().all()
        members = (await self.db.execute(
            select(BoardMember).where(BoardMember.board_id == board_id)
        )).scalars().all()

        tasks_by_group: Dict[str, List[Task]] = {g.id: [] for g in groups}
        for task in tasks:
            tasks_by_group[task.group_id].append(task)

        return BoardView(
            board=board,
            permission=decision.permission,
            columns=list(columns),
            groups=list(groups),
            tasks_by_group=tasks_by_group,
            members=list(members),
        )

    async def create_board(
        self,
        workspace_id: str,
        name: str,
        board_type: BoardType = BoardType.GENERAL,
        description: Optional[str] = None,
        color: Optional[str] = None,
        is_public: bool = False,
    ) -> Board:
        await self.resolver.require_workspace(self.actor_id, workspace_id, Permission.EDIT)

        board = Board(
            workspace_id=workspace_id,
            created_by_id=self.actor_id,
            name=name,
            board_type=board_type,
            description=description,
            color=color,
            is_public=is_public,
        )
        self.db.add(board)
        await self.db.flush()

        for index, (col_name, field_type, settings) in enumerate(DEFAULT_COLUMNS[BoardType(board_type)]):
            self.db.add(BoardColumn(
                board_id=board.id, name=col_name, field_type=field_type,
                settings=settings, position=index,
            ))
        self.db.add(Group(board_id=board.id, name=DEFAULT_GROUP_NAME, position=0))
        await self.db.commit()

        logger.info(f"Board {board.id[:8]} created in workspace {workspace_id[:8]} by {self.actor_id[:8]}")
        await self._emit(
            "board.created", board_id=board.id, entity_type="board", entity_id=board.id,
            details={"name": name, "board_type": BoardType(board_type).value},
        )
        return board

    async def update_board(self, board_id: str, changes: Dict[str, Any]) -> Board:
        await self.resolver.require(self.actor_id, Target.board(board_id))
        board = await self._get(Board, board_id, "board")
        changed = apply_changes(board, changes, BOARD_FIELDS)
        await self.db.commit()

        await self._emit(
            "board.updated", board_id=board_id, entity_type="board", entity_id=board_id,
            details={"fields": changed},
        )
        return board

    async def delete_board(self, board_id: str) -> None:
        await self.resolver.require(self.actor_id, Target.board(board_id))
        board = await self._get(Board, board_id, "board")
        board.is_active = False
        await self.db.commit()

        logger.info(f"Board {board_id[:8]} soft-deleted by {self.actor_id[:8]}")
        await self._emit("board.deleted", board_id=board_id, entity_type="board", entity_id=board_id)

    async def add_member(self, board_id: str, user_id: str, can_edit: bool = False) -> BoardMember:
        """Grant or update a user's board membership"""
        await self.resolver.require(self.actor_id, Target.board(board_id))
        user = await self._get(User, user_id, "user")
        board = await self._get(Board, board_id, "board")

        member = (await self.db.execute(
            select(BoardMember).where(BoardMember.board_id == board_id, BoardMember.user_id == user_id)
        )).scalar_one_or_none()
        created = member is None
        if created:
            member = BoardMember(board_id=board_id, user_id=user_id, can_edit=can_edit)
            self.db.add(member)
        else:
            member.can_edit = can_edit
        await self.db.commit()

        notify = []
        if created:
            notify.append(NotificationSpec(
                user_id=user.id,
                notification_type=NotificationType.BOARD_SHARED,
                title="Board shared with you",
                message=f"{self.actor.name or self.actor.email} shared \"{board.name}\" with you",
                link=f"/boards/{board_id}",
            ))
        await self._emit(
            "board.member_added", board_id=board_id, entity_type="board_member", entity_id=member.id,
            details={"user_id": user_id, "can_edit": can_edit, "created": created},
            notify=notify,
        )
        return member

    async def remove_member(self, board_id: str, user_id: str) -> None:
        await self.resolver.require(self.actor_id, Target.board(board_id))
        member = (await self.db.execute(
            select(BoardMember).where(BoardMember.board_id == board_id, BoardMember.user_id == user_id)
        )).scalar_one_or_none()
        if member is None:
            raise NotFound("board member", user_id)

        member_id = member.id
        await self.db.delete(member)
        await self.db.commit()

        await self._emit(
            "board.member_removed", board_id=board_id, entity_type="board_member", entity_id=member_id,
            details={"user_id": user_id},
        )

    # ---------------------------------------------------------------- groups

    async def create_group(self, board_id: str, name: str, color: Optional[str] = None) -> Group:
        scope = Scope.groups_of(board_id)
        await self.resolver.require(self.actor_id, Target.board(board_id), lock=False)
        async with self.ordering.serialized(scope):
            await self.resolver.require(self.actor_id, Target.board(board_id))
            group = Group(board_id=board_id, name=name, color=color, position=await self.ordering.append(scope))
            self.db.add(group)
            await self.db.commit()

        await self._emit(
            "group.created", board_id=board_id, entity_type="group", entity_id=group.id,
            details={"name": name, "position": group.position},
        )
        return group

    async def update_group(self, group_id: str, changes: Dict[str, Any]) -> Group:
        decision = await self.resolver.require(self.actor_id, Target.group(group_id))
        group = await self._get(Group, group_id, "group")
        changed = apply_changes(group, changes, GROUP_FIELDS)
        await self.db.commit()

        await self._emit(
            "group.updated", board_id=decision.board_id, entity_type="group", entity_id=group_id,
            details={"fields": changed},
        )
        return group

    async def reorder_groups(self, board_id: str, group_ids: Sequence[str]) -> List[str]:
        scope = Scope.groups_of(board_id)
        await self.resolver.require(self.actor_id, Target.board(board_id), lock=False)
        async with self.ordering.serialized(scope):
            await self.resolver.require(self.actor_id, Target.board(board_id))
            ordered = await self.ordering.reorder(scope, group_ids)
            await self.db.commit()

        await self._emit(
            "group.reordered", board_id=board_id, entity_type="board", entity_id=board_id,
            details={"order": ordered},
        )
        return ordered

    async def delete_group(self, group_id: str) -> None:
        decision = await self.resolver.require(self.actor_id, Target.group(group_id))
        group = await self._get(Group, group_id, "group")
        group.is_active = False
        await self.db.commit()

        await self._emit("group.deleted", board_id=decision.board_id, entity_type="group", entity_id=group_id)

    # --------------------------------------------------------------- columns

    async def create_column(
        self,
        board_id: str,
        name: str,
        field_type: FieldType = FieldType.TEXT,
        settings: Optional[dict] = None,
        width: Optional[int] = None,
    ) -> BoardColumn:
        scope = Scope.columns_of(board_id)
        await self.resolver.require(self.actor_id, Target.board(board_id), lock=False)
        async with self.ordering.serialized(scope):
            await self.resolver.require(self.actor_id, Target.board(board_id))
            column = BoardColumn(
                board_id=board_id, name=name, field_type=field_type,
                settings=settings, width=width, position=await self.ordering.append(scope),
            )
            self.db.add(column)
            await self.db.commit()

        await self._emit(
            "column.created", board_id=board_id, entity_type="column", entity_id=column.id,
            details={"name": name, "field_type": FieldType(field_type).value, "position": column.position},
        )
        return column

    async def update_column(self, column_id: str, changes: Dict[str, Any]) -> BoardColumn:
        decision = await self.resolver.require(self.actor_id, Target.column(column_id))
        column = await self._get(BoardColumn, column_id, "column")
        changed = apply_changes(column, changes, COLUMN_FIELDS)
        await self.db.commit()

        await self._emit(
            "column.updated", board_id=decision.board_id, entity_type="column", entity_id=column_id,
            details={"fields": changed},
        )
        return column

    async def reorder_columns(self, board_id: str, column_ids: Sequence[str]) -> List[str]:
        scope = Scope.columns_of(board_id)
        await self.resolver.require(self.actor_id, Target.board(board_id), lock=False)
        async with self.ordering.serialized(scope):
            await self.resolver.require(self.actor_id, Target.board(board_id))
            ordered = await self.ordering.reorder(scope, column_ids)
            await self.db.commit()

        await self._emit(
            "column.reordered", board_id=board_id, entity_type="board", entity_id=board_id,
            details={"order": ordered},
        )
        return ordered

    async def delete_column(self, column_id: str) -> None:
        """Hard delete; the column's field values go with it"""
        decision = await self.resolver.require(self.actor_id, Target.column(column_id))
        await self.db.execute(delete(TaskFieldValue).where(TaskFieldValue.column_id == column_id))
        await self.db.execute(delete(BoardColumn).where(BoardColumn.id == column_id))
        await self.db.commit()

        await self._emit("column.deleted", board_id=decision.board_id, entity_type="column", entity_id=column_id)


def get_board_service(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    emitter: EventEmitter = Depends(get_event_emitter),
) -> BoardService:
    return BoardService(db, user, emitter=emitter)

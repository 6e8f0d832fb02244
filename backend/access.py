# access.py - Hierarchical access resolver
# Workspace → Board → (Group | Column | Task → SubTask)
#
# Every board-scoped entity inherits its permission from the owning board.
# The resolver walks the parent chain in a single read, then applies the
# workspace-role and board-membership rules in `decide`.

import os
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Protocol

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from errors import Forbidden, NotFound
from models import (
    Board, BoardMember, BoardColumn, Group, Task, SubTask,
    Workspace, WorkspaceMember, MemberRole, STAFF_ROLES,
)
from telemetry import traced_span

logger = logging.getLogger("workboard.access")


class Permission(str, Enum):
    """Effective permission of an actor on a board"""
    DENIED = "denied"
    READ_ONLY = "read_only"
    EDIT = "edit"

    @property
    def rank(self) -> int:
        return {"denied": 0, "read_only": 1, "edit": 2}[self.value]

    def satisfies(self, required: "Permission") -> bool:
        return self.rank >= required.rank


def _public_board_permission() -> Permission:
    value = os.getenv("PUBLIC_BOARD_ACCESS", "edit").lower()
    if value == "edit":
        return Permission.EDIT
    if value == "read_only":
        return Permission.READ_ONLY
    logger.warning(f"Unknown PUBLIC_BOARD_ACCESS={value!r}, falling back to 'edit'")
    return Permission.EDIT


# Granted to CUSTOMER actors on public boards
PUBLIC_BOARD_PERMISSION = _public_board_permission()


class TargetKind(str, Enum):
    BOARD = "board"
    GROUP = "group"
    COLUMN = "column"
    TASK = "task"
    SUBTASK = "subtask"


@dataclass(frozen=True)
class Target:
    """Tagged reference to a board-scoped entity"""
    kind: TargetKind
    id: str

    @classmethod
    def board(cls, board_id: str) -> "Target":
        return cls(TargetKind.BOARD, board_id)

    @classmethod
    def group(cls, group_id: str) -> "Target":
        return cls(TargetKind.GROUP, group_id)

    @classmethod
    def column(cls, column_id: str) -> "Target":
        return cls(TargetKind.COLUMN, column_id)

    @classmethod
    def task(cls, task_id: str) -> "Target":
        return cls(TargetKind.TASK, task_id)

    @classmethod
    def subtask(cls, subtask_id: str) -> "Target":
        return cls(TargetKind.SUBTASK, subtask_id)


@dataclass(frozen=True)
class AccessFacts:
    """Everything `decide` needs, as read from the membership store"""
    board_id: str
    workspace_id: str
    is_public: bool
    workspace_role: Optional[MemberRole]  # None when the actor has no active membership
    has_board_member: bool = False
    board_member_can_edit: bool = False


@dataclass(frozen=True)
class WorkspaceFacts:
    workspace_id: str
    workspace_role: Optional[MemberRole]


@dataclass(frozen=True)
class AccessDecision:
    permission: Permission
    board_id: str
    workspace_id: str

    @property
    def can_edit(self) -> bool:
        return self.permission is Permission.EDIT

    @property
    def allowed(self) -> bool:
        return self.permission is not Permission.DENIED


@dataclass(frozen=True)
class WorkspaceDecision:
    permission: Permission
    workspace_id: str
    role: Optional[MemberRole]


def decide(facts: AccessFacts, public_permission: Permission = Permission.EDIT) -> Permission:
    if facts.workspace_role is None:
        return Permission.DENIED

    if MemberRole(facts.workspace_role) in STAFF_ROLES:
        return Permission.EDIT

    member_permission = None
    if facts.has_board_member:
        member_permission = Permission.EDIT if facts.board_member_can_edit else Permission.READ_ONLY

    if facts.is_public:
        if member_permission is None or public_permission.rank > member_permission.rank:
            return public_permission
        return member_permission

    return member_permission or Permission.DENIED


def decide_workspace(role: Optional[MemberRole]) -> Permission:
    if role is None:
        return Permission.DENIED
    if MemberRole(role) in STAFF_ROLES:
        return Permission.EDIT
    return Permission.READ_ONLY


# ============================================================
# MEMBERSHIP STORE
# ============================================================

class MembershipStore(Protocol):
    async def load_facts(self, actor_id: str, target: Target, lock: bool = False) -> Optional[AccessFacts]:
        ...

    async def load_workspace_facts(self, actor_id: str, workspace_id: str) -> Optional[WorkspaceFacts]:
        ...


def _board_of_board(target_id: str):
    return select(Board.id).where(Board.id == target_id)


def _board_of_group(target_id: str):
    return select(Group.board_id).where(Group.id == target_id, Group.is_active.is_(True))


def _board_of_column(target_id: str):
    return select(BoardColumn.board_id).where(BoardColumn.id == target_id)


def _board_of_task(target_id: str):
    return (
        select(Group.board_id)
        .select_from(Task)
        .join(Group, Group.id == Task.group_id)
        .where(Task.id == target_id, Task.is_active.is_(True), Group.is_active.is_(True))
    )


def _board_of_subtask(target_id: str):
    return (
        select(Group.board_id)
        .select_from(SubTask)
        .join(Task, Task.id == SubTask.task_id)
        .join(Group, Group.id == Task.group_id)
        .where(SubTask.id == target_id, Task.is_active.is_(True), Group.is_active.is_(True))
    )


_OWNING_BOARD: Dict[TargetKind, Callable] = {
    TargetKind.BOARD: _board_of_board,
    TargetKind.GROUP: _board_of_group,
    TargetKind.COLUMN: _board_of_column,
    TargetKind.TASK: _board_of_task,
    TargetKind.SUBTASK: _board_of_subtask,
}


class SqlMembershipStore:
    """Reads access facts with one chain-resolving query"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_facts(self, actor_id: str, target: Target, lock: bool = False) -> Optional[AccessFacts]:
        owning_board = _OWNING_BOARD[target.kind](target.id).correlate(None).scalar_subquery()

        stmt = (
            select(
                Board.id,
                Board.workspace_id,
                Board.is_public,
                WorkspaceMember.role,
                BoardMember.id,
                BoardMember.can_edit,
            )
            .select_from(Board)
            .join(Workspace, and_(Workspace.id == Board.workspace_id, Workspace.is_active.is_(True)))
            .outerjoin(
                WorkspaceMember,
                and_(
                    WorkspaceMember.workspace_id == Board.workspace_id,
                    WorkspaceMember.user_id == actor_id,
                    WorkspaceMember.is_active.is_(True),
                ),
            )
            .outerjoin(
                BoardMember,
                and_(BoardMember.board_id == Board.id, BoardMember.user_id == actor_id),
            )
            .where(Board.id == owning_board, Board.is_active.is_(True))
        )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            return None

        board_id, workspace_id, is_public, role, board_member_id, can_edit = row

        if lock and role is not None:
            # Hold the membership row for the rest of the transaction so a
            # concurrent revocation cannot commit between check and write.
            # Postgres rejects FOR SHARE on the nullable side of an outer join,
            # hence the separate statement. SQLite renders no lock clause.
            await self.db.execute(
                select(WorkspaceMember.id)
                .where(
                    WorkspaceMember.workspace_id == workspace_id,
                    WorkspaceMember.user_id == actor_id,
                )
                .with_for_update(read=True)
            )

        return AccessFacts(
            board_id=board_id,
            workspace_id=workspace_id,
            is_public=bool(is_public),
            workspace_role=MemberRole(role) if role is not None else None,
            has_board_member=board_member_id is not None,
            board_member_can_edit=bool(can_edit),
        )

    async def load_workspace_facts(self, actor_id: str, workspace_id: str) -> Optional[WorkspaceFacts]:
        stmt = (
            select(Workspace.id, WorkspaceMember.role)
            .select_from(Workspace)
            .outerjoin(
                WorkspaceMember,
                and_(
                    WorkspaceMember.workspace_id == Workspace.id,
                    WorkspaceMember.user_id == actor_id,
                    WorkspaceMember.is_active.is_(True),
                ),
            )
            .where(Workspace.id == workspace_id, Workspace.is_active.is_(True))
        )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            return None
        return WorkspaceFacts(
            workspace_id=row[0],
            workspace_role=MemberRole(row[1]) if row[1] is not None else None,
        )


# ============================================================
# RESOLVER
# ============================================================

class AccessResolver:
    """Computes an actor's effective permission on board-scoped entities"""

    def __init__(self, store: MembershipStore, public_permission: Optional[Permission] = None):
        self.store = store
        self.public_permission = public_permission or PUBLIC_BOARD_PERMISSION

    @classmethod
    def for_session(cls, db: AsyncSession) -> "AccessResolver":
        return cls(SqlMembershipStore(db))

    async def resolve(self, actor_id: str, target: Target, lock: bool = False) -> AccessDecision:
        with traced_span("access.resolve", kind=target.kind.value, target_id=target.id):
            facts = await self.store.load_facts(actor_id, target, lock=lock)
        if facts is None:
            raise NotFound(target.kind.value, target.id)

        permission = decide(facts, self.public_permission)
        logger.debug(
            f"resolve actor={actor_id[:8]} {target.kind.value}={target.id[:8]} "
            f"board={facts.board_id[:8]} → {permission.value}"
        )
        return AccessDecision(permission=permission, board_id=facts.board_id, workspace_id=facts.workspace_id)

    async def require(
        self,
        actor_id: str,
        target: Target,
        level: Permission = Permission.EDIT,
        mask_missing: bool = False,
        lock: Optional[bool] = None,
    ) -> AccessDecision:
        """Resolve and enforce `level`.

        With `mask_missing`, a missing target is reported as Forbidden so the
        caller does not learn whether it exists. Edit checks hold the
        membership rows FOR SHARE unless `lock` is False, which serves as the
        lock-free pre-check before a caller takes ordering row locks.
        """
        if lock is None:
            lock = level is Permission.EDIT
        try:
            decision = await self.resolve(actor_id, target, lock=lock)
        except NotFound:
            if mask_missing:
                raise Forbidden("Access denied", required=level.value)
            raise

        if not decision.permission.satisfies(level):
            message = "Edit access required" if level is Permission.EDIT else "Access denied"
            raise Forbidden(message, required=level.value)
        return decision

    async def can_read(self, actor_id: str, board_id: str) -> bool:
        """True when the actor may read the board; a missing board reads as False"""
        try:
            await self.require(actor_id, Target.board(board_id), Permission.READ_ONLY, mask_missing=True)
        except Forbidden:
            return False
        return True

    async def resolve_workspace(self, actor_id: str, workspace_id: str) -> WorkspaceDecision:
        facts = await self.store.load_workspace_facts(actor_id, workspace_id)
        if facts is None:
            raise NotFound("workspace", workspace_id)
        role = facts.workspace_role
        return WorkspaceDecision(permission=decide_workspace(role), workspace_id=facts.workspace_id, role=role)

    async def require_workspace(
        self, actor_id: str, workspace_id: str, level: Permission = Permission.EDIT,
    ) -> WorkspaceDecision:
        decision = await self.resolve_workspace(actor_id, workspace_id)
        if not decision.permission.satisfies(level):
            message = "Not authorized for this workspace" if level is Permission.EDIT else "Access denied"
            raise Forbidden(message, required=level.value)
        return decision

# ordering.py - Position management for ordered sibling collections
#
# Scopes: columns-of-board, groups-of-board, tasks-of-group, subtasks-of-task.
# Append takes max(position)+1 over every row in the scope (soft-deleted rows
# included, so their positions are never handed out again). Reorder is the
# only operation that produces a dense 0..N-1 sequence.

import asyncio
import logging
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictingPosition, InvalidOrder, NotFound
from models import Board, BoardColumn, Group, Task, SubTask
from telemetry import traced_span

logger = logging.getLogger("workboard.ordering")


class ScopeKind(str, Enum):
    BOARD_COLUMNS = "board_columns"
    BOARD_GROUPS = "board_groups"
    GROUP_TASKS = "group_tasks"
    TASK_SUBTASKS = "task_subtasks"


@dataclass(frozen=True)
class _ScopeSpec:
    model: type
    parent_attr: str
    parent_model: type
    entity: str
    soft_delete: bool

    @property
    def parent_column(self):
        return getattr(self.model, self.parent_attr)


_SPECS: Dict[ScopeKind, _ScopeSpec] = {
    ScopeKind.BOARD_COLUMNS: _ScopeSpec(BoardColumn, "board_id", Board, "column", soft_delete=False),
    ScopeKind.BOARD_GROUPS: _ScopeSpec(Group, "board_id", Board, "group", soft_delete=True),
    ScopeKind.GROUP_TASKS: _ScopeSpec(Task, "group_id", Group, "task", soft_delete=True),
    ScopeKind.TASK_SUBTASKS: _ScopeSpec(SubTask, "task_id", Task, "subtask", soft_delete=False),
}


@dataclass(frozen=True)
class Scope:
    """A (parent type, parent id) pair that owns one order-space"""
    kind: ScopeKind
    parent_id: str

    @classmethod
    def columns_of(cls, board_id: str) -> "Scope":
        return cls(ScopeKind.BOARD_COLUMNS, board_id)

    @classmethod
    def groups_of(cls, board_id: str) -> "Scope":
        return cls(ScopeKind.BOARD_GROUPS, board_id)

    @classmethod
    def tasks_of(cls, group_id: str) -> "Scope":
        return cls(ScopeKind.GROUP_TASKS, group_id)

    @classmethod
    def subtasks_of(cls, task_id: str) -> "Scope":
        return cls(ScopeKind.TASK_SUBTASKS, task_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.parent_id}"


class ScopeLocks:
    """In-process asyncio locks keyed by scope.

    Entries disappear once no coroutine holds a reference to the lock.
    Multi-scope acquisition is sorted so two movers cannot deadlock.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Scope, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, scope: Scope) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[scope] = lock
        return lock

    @asynccontextmanager
    async def hold(self, *scopes: Scope):
        async with AsyncExitStack() as stack:
            for scope in sorted(set(scopes), key=str):
                await stack.enter_async_context(self.get(scope))
            yield


# Shared by every request handled by this process
scope_locks = ScopeLocks()


class OrderingEngine:
    """Append, reorder and cross-scope moves over one session's transaction"""

    def __init__(self, db: AsyncSession, locks: Optional[ScopeLocks] = None):
        self.db = db
        self.locks = locks or scope_locks

    @asynccontextmanager
    async def serialized(self, *scopes: Scope):
        """Serialize position-affecting work on `scopes` until the block exits.

        The caller commits inside the block. Holds the in-process scope locks
        and a row lock on each parent (FOR UPDATE; SQLite renders none). A
        unique-position violation surfacing in the block becomes
        ConflictingPosition after the transaction is rolled back.
        """
        async with self.locks.hold(*scopes):
            for scope in sorted(set(scopes), key=str):
                spec = _SPECS[scope.kind]
                await self.db.execute(
                    select(spec.parent_model.id)
                    .where(spec.parent_model.id == scope.parent_id)
                    .with_for_update()
                )
            try:
                yield self
            except IntegrityError as exc:
                await self.db.rollback()
                label = ", ".join(str(s) for s in scopes)
                logger.warning(f"Position conflict on {label}: {exc.orig}")
                raise ConflictingPosition(label) from exc

    async def append(self, scope: Scope) -> int:
        """Next free position: max(position)+1, or 0 for an empty scope"""
        spec = _SPECS[scope.kind]
        # Session runs with autoflush off; pending siblings must count
        await self.db.flush()
        stmt = select(func.max(spec.model.position)).where(spec.parent_column == scope.parent_id)
        max_pos = (await self.db.execute(stmt)).scalar()
        return 0 if max_pos is None else max_pos + 1

    async def list_ids(self, scope: Scope, include_inactive: bool = False) -> List[str]:
        spec = _SPECS[scope.kind]
        stmt = select(spec.model.id).where(spec.parent_column == scope.parent_id)
        if spec.soft_delete and not include_inactive:
            stmt = stmt.where(spec.model.is_active.is_(True))
        stmt = stmt.order_by(spec.model.position.asc())
        return list((await self.db.execute(stmt)).scalars().all())

    async def reorder(self, scope: Scope, ordered_ids: Sequence[str]) -> List[str]:
        """Assign position = index to each id.

        `ordered_ids` must name every active sibling exactly once, otherwise
        InvalidOrder is raised and nothing is written. Soft-deleted siblings
        are re-slotted after the active ones, keeping their relative order.
        """
        spec = _SPECS[scope.kind]
        ordered_ids = list(ordered_ids)

        with traced_span("ordering.reorder", scope=str(scope), size=len(ordered_ids)):
            await self.db.flush()
            columns = [spec.model.id, spec.model.position]
            if spec.soft_delete:
                columns.append(spec.model.is_active)
            rows = (await self.db.execute(
                select(*columns)
                .where(spec.parent_column == scope.parent_id)
                .order_by(spec.model.position.asc())
            )).all()

            current = {row[0]: row[1] for row in rows}
            if spec.soft_delete:
                active = [row[0] for row in rows if row[2]]
                inactive = [row[0] for row in rows if not row[2]]
            else:
                active = [row[0] for row in rows]
                inactive = []

            seen, duplicates = set(), set()
            for child_id in ordered_ids:
                if child_id in seen:
                    duplicates.add(child_id)
                seen.add(child_id)
            missing = set(active) - seen
            unexpected = seen - set(active)
            if duplicates or missing or unexpected:
                raise InvalidOrder(missing=missing, unexpected=unexpected, duplicates=duplicates)

            target = {child_id: index for index, child_id in enumerate(ordered_ids)}
            for offset, child_id in enumerate(inactive):
                target[child_id] = len(ordered_ids) + offset

            changed = [child_id for child_id, pos in target.items() if current[child_id] != pos]

            # Park changed rows on unique negative slots first so the
            # (parent, position) constraint holds after every statement.
            for slot, child_id in enumerate(changed, start=1):
                await self._set_position(spec, scope, child_id, -slot)
            for child_id in changed:
                await self._set_position(spec, scope, child_id, target[child_id])

        logger.info(f"Reordered {scope} ({len(ordered_ids)} active, {len(changed)} moved)")
        return ordered_ids

    async def move_across_scope(self, child_id: str, new_scope: Scope) -> int:
        """Re-parent a child and append it at the end of `new_scope`"""
        spec = _SPECS[new_scope.kind]
        position = await self.append(new_scope)
        result = await self.db.execute(
            update(spec.model)
            .where(spec.model.id == child_id)
            .values({spec.parent_attr: new_scope.parent_id, "position": position})
        )
        if result.rowcount != 1:
            raise NotFound(spec.entity, child_id)
        logger.info(f"Moved {spec.entity} {child_id[:8]} → {new_scope} @ {position}")
        return position

    async def _set_position(self, spec: _ScopeSpec, scope: Scope, child_id: str, position: int) -> None:
        result = await self.db.execute(
            update(spec.model)
            .where(spec.model.id == child_id, spec.parent_column == scope.parent_id)
            .values(position=position)
        )
        if result.rowcount != 1:
            # Row was deleted or re-parented since it was read
            raise ConflictingPosition(str(scope))

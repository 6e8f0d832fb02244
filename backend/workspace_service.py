# workspace_service.py - Workspaces and their memberships
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from access import Permission, WorkspaceDecision
from auth import CurrentUser, get_current_user
from database import get_db_session
from errors import Conflict, Forbidden, InvalidOperation, NotFound
from events import EventEmitter, NotificationSpec, get_event_emitter
from facade import BaseFacade, apply_changes
from models import (
    Board, Currency, MemberRole, NotificationType, User, Workspace, WorkspaceMember,
)

logger = logging.getLogger("workboard.workspaces")

WORKSPACE_FIELDS = ("name", "description", "default_currency")


@dataclass
class WorkspaceView:
    workspace: Workspace
    role: MemberRole
    member_count: int
    board_count: int


class WorkspaceService(BaseFacade):

    async def list_workspaces(self) -> List[Tuple[Workspace, MemberRole]]:
        rows = (await self.db.execute(
            select(Workspace, WorkspaceMember.role)
            .join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
            .where(
                WorkspaceMember.user_id == self.actor_id,
                WorkspaceMember.is_active.is_(True),
                Workspace.is_active.is_(True),
            )
            .order_by(Workspace.name)
        )).all()
        return [(workspace, MemberRole(role)) for workspace, role in rows]

    async def create_workspace(
        self,
        name: str,
        slug: str,
        description: Optional[str] = None,
        default_currency: Currency = Currency.USD,
    ) -> Workspace:
        if not self.actor.is_owner_admin:
            raise Forbidden("Only owner admins can create workspaces", required=MemberRole.OWNER_ADMIN.value)

        taken = (await self.db.execute(select(Workspace.id).where(Workspace.slug == slug))).scalar_one_or_none()
        if taken is not None:
            raise Conflict("Workspace slug already taken", slug=slug)

        workspace = Workspace(name=name, slug=slug, description=description, default_currency=default_currency)
        self.db.add(workspace)
        await self.db.flush()
        self.db.add(WorkspaceMember(workspace_id=workspace.id, user_id=self.actor_id, role=MemberRole.OWNER_ADMIN))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise Conflict("Workspace slug already taken", slug=slug)

        logger.info(f"Workspace {workspace.id[:8]} ({slug}) created by {self.actor_id[:8]}")
        await self._emit(
            "workspace.created", entity_type="workspace", entity_id=workspace.id, details={"slug": slug},
        )
        return workspace

    async def get_workspace(self, workspace_id: str) -> WorkspaceView:
        decision = await self.resolver.require_workspace(self.actor_id, workspace_id, Permission.READ_ONLY)
        workspace = await self._get(Workspace, workspace_id, "workspace")

        member_count = (await self.db.execute(
            select(func.count(WorkspaceMember.id))
            .where(WorkspaceMember.workspace_id == workspace_id, WorkspaceMember.is_active.is_(True))
        )).scalar() or 0
        board_count = (await self.db.execute(
            select(func.count(Board.id)).where(Board.workspace_id == workspace_id, Board.is_active.is_(True))
        )).scalar() or 0

        return WorkspaceView(workspace=workspace, role=decision.role, member_count=member_count, board_count=board_count)

    async def update_workspace(self, workspace_id: str, changes: Dict[str, Any]) -> Workspace:
        await self.resolver.require_workspace(self.actor_id, workspace_id, Permission.EDIT)
        workspace = await self._get(Workspace, workspace_id, "workspace")
        changed = apply_changes(workspace, changes, WORKSPACE_FIELDS)
        await self.db.commit()

        await self._emit(
            "workspace.updated", entity_type="workspace", entity_id=workspace_id, details={"fields": changed},
        )
        return workspace

    async def list_members(self, workspace_id: str) -> List[WorkspaceMember]:
        await self.resolver.require_workspace(self.actor_id, workspace_id, Permission.READ_ONLY)
        rows = (await self.db.execute(
            select(WorkspaceMember)
            .options(selectinload(WorkspaceMember.user))
            .where(WorkspaceMember.workspace_id == workspace_id, WorkspaceMember.is_active.is_(True))
            .order_by(WorkspaceMember.joined_at)
        )).scalars().all()
        return list(rows)

    async def add_member(
        self, workspace_id: str, user_id: str, role: MemberRole = MemberRole.CUSTOMER,
    ) -> Tuple[WorkspaceMember, User]:
        """Add, re-activate or change the role of a member"""
        decision = await self.resolver.require_workspace(self.actor_id, workspace_id, Permission.READ_ONLY)
        self._require_admin(decision)
        workspace = await self._get(Workspace, workspace_id, "workspace")
        user = await self._get(User, user_id, "user")

        member = (await self.db.execute(
            select(WorkspaceMember)
            .where(WorkspaceMember.workspace_id == workspace_id, WorkspaceMember.user_id == user_id)
        )).scalar_one_or_none()
        joined = member is None or not member.is_active
        if member is None:
            member = WorkspaceMember(workspace_id=workspace_id, user_id=user_id, role=role)
            self.db.add(member)
        else:
            member.role = role
            member.is_active = True
        await self.db.commit()

        notify = []
        if joined:
            notify.append(NotificationSpec(
                user_id=user_id,
                notification_type=NotificationType.WORKSPACE_ADDED,
                title="Added to workspace",
                message=f"You were added to \"{workspace.name}\"",
                link=f"/workspaces/{workspace_id}",
            ))
        await self._emit(
            "workspace.member_added", entity_type="workspace_member", entity_id=member.id,
            details={"workspace_id": workspace_id, "user_id": user_id, "role": MemberRole(role).value},
            notify=notify,
        )
        return member, user

    async def remove_member(self, workspace_id: str, user_id: str) -> None:
        """Deactivate a membership; the row is kept"""
        decision = await self.resolver.require_workspace(self.actor_id, workspace_id, Permission.READ_ONLY)
        self._require_admin(decision)
        if user_id == self.actor_id:
            raise InvalidOperation("Cannot remove yourself from the workspace")

        member = (await self.db.execute(
            select(WorkspaceMember).where(
                WorkspaceMember.workspace_id == workspace_id,
                WorkspaceMember.user_id == user_id,
                WorkspaceMember.is_active.is_(True),
            )
        )).scalar_one_or_none()
        if member is None:
            raise NotFound("workspace member", user_id)

        member.is_active = False
        await self.db.commit()

        logger.info(f"User {user_id[:8]} removed from workspace {workspace_id[:8]}")
        await self._emit(
            "workspace.member_removed", entity_type="workspace_member", entity_id=member.id,
            details={"workspace_id": workspace_id, "user_id": user_id},
        )

    @staticmethod
    def _require_admin(decision: WorkspaceDecision) -> None:
        if decision.role != MemberRole.OWNER_ADMIN:
            raise Forbidden("Admin access required", required=MemberRole.OWNER_ADMIN.value)


def get_workspace_service(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    emitter: EventEmitter = Depends(get_event_emitter),
) -> WorkspaceService:
    return WorkspaceService(db, user, emitter=emitter)

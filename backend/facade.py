# facade.py - Shared plumbing for the workspace, board and task services
#
# A service call runs in one AsyncSession: resolve access, touch positions
# through the ordering engine, commit, then hand a DomainEvent to the
# emitter. Nothing after the commit can undo the mutation.

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from access import AccessResolver
from auth import CurrentUser
from errors import NotFound
from events import DomainEvent, EventEmitter
from ordering import OrderingEngine

logger = logging.getLogger("workboard.facade")


class BaseFacade:
    def __init__(
        self,
        db: AsyncSession,
        actor: CurrentUser,
        resolver: Optional[AccessResolver] = None,
        ordering: Optional[OrderingEngine] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        self.db = db
        self.actor = actor
        self.resolver = resolver or AccessResolver.for_session(db)
        self.ordering = ordering or OrderingEngine(db)
        self.emitter = emitter or EventEmitter()

    @property
    def actor_id(self) -> str:
        return self.actor.id

    async def _get(self, model, entity_id: str, entity: str):
        obj = await self.db.get(model, entity_id)
        if obj is None:
            raise NotFound(entity, entity_id)
        return obj

    async def _emit(self, action: str, **fields: Any) -> None:
        await self.emitter.emit(self.db, DomainEvent(action=action, actor_id=self.actor_id, **fields))


def apply_changes(obj, changes: Dict[str, Any], allowed: Iterable[str]) -> List[str]:
    """Copy whitelisted keys from `changes` onto `obj`; returns the fields that changed"""
    changed = []
    for key in allowed:
        if key not in changes:
            continue
        value = changes[key]
        if getattr(obj, key) != value:
            setattr(obj, key, value)
            changed.append(key)
    return changed

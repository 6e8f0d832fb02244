# events.py - Best-effort side channel for board mutations
#
# Emission happens after the primary mutation has committed. Each sink runs
# in isolation: a failing sink is logged and skipped, never re-raised, and
# DB sinks write through their own session so a failure there cannot touch
# the caller's session state.

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from access import AccessResolver
from models import ActivityLog, Notification, NotificationType, utcnow
from routers.websocket_router import manager, board_channel

logger = logging.getLogger("workboard.events")


@dataclass
class NotificationSpec:
    user_id: str
    notification_type: NotificationType
    title: str
    message: str
    link: Optional[str] = None


@dataclass
class DomainEvent:
    action: str  # e.g. "task.moved"
    actor_id: str
    entity_type: str
    entity_id: str
    board_id: Optional[str] = None
    task_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    notify: List[NotificationSpec] = field(default_factory=list)
    log_activity: bool = True

    @property
    def verb(self) -> str:
        return self.action.split(".", 1)[-1]


class ActivityLogSink:
    async def __call__(self, bind, event: DomainEvent) -> None:
        if not event.log_activity or event.board_id is None:
            return
        async with AsyncSession(bind, expire_on_commit=False) as side:
            side.add(ActivityLog(
                board_id=event.board_id,
                task_id=event.task_id,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                user_id=event.actor_id,
                action=event.verb,
                details=event.details,
            ))
            await side.commit()


class NotificationSink:
    async def __call__(self, bind, event: DomainEvent) -> None:
        recipients = [n for n in event.notify if n.user_id != event.actor_id]
        if not recipients:
            return
        async with AsyncSession(bind, expire_on_commit=False) as side:
            for spec in recipients:
                side.add(Notification(
                    user_id=spec.user_id,
                    notification_type=spec.notification_type,
                    title=spec.title,
                    message=spec.message,
                    link=spec.link,
                ))
            await side.commit()


class BroadcastSink:
    """Pushes board events to subscribed sockets.

    Subscribers are re-checked for read access on every event, so a revoked
    membership or a board turned private stops delivery from the next event
    on. A deleted board sends its last event and then closes the channel.
    """

    async def __call__(self, bind, event: DomainEvent) -> None:
        if event.board_id is None:
            return
        channel = board_channel(event.board_id)
        if event.action == "board.deleted":
            await manager.broadcast_to_channel(channel, self._message(event), exclude_user=event.actor_id)
            manager.close_channel(channel)
            return

        audience = manager.subscribers(channel) - {event.actor_id}
        if not audience:
            return
        async with AsyncSession(bind, expire_on_commit=False) as side:
            resolver = AccessResolver.for_session(side)
            for user_id in audience:
                if not await resolver.can_read(user_id, event.board_id):
                    manager.revoke(user_id, channel)
        await manager.broadcast_to_channel(channel, self._message(event), exclude_user=event.actor_id)

    @staticmethod
    def _message(event: DomainEvent) -> dict:
        return {
            "type": "board_event",
            "action": event.action,
            "board_id": event.board_id,
            "entity_type": event.entity_type,
            "entity_id": event.entity_id,
            "actor_id": event.actor_id,
            "details": event.details,
            "at": utcnow().isoformat(),
        }


def default_sinks() -> list:
    return [ActivityLogSink(), NotificationSink(), BroadcastSink()]


class EventEmitter:
    def __init__(self, sinks: Optional[Sequence] = None):
        self.sinks = list(sinks) if sinks is not None else default_sinks()

    async def emit(self, db: AsyncSession, event: DomainEvent) -> int:
        """Run every sink; returns how many failed"""
        failures = 0
        for sink in self.sinks:
            try:
                await sink(db.bind, event)
            except Exception:
                failures += 1
                logger.exception(
                    f"{type(sink).__name__} failed for {event.action} "
                    f"{event.entity_type}={event.entity_id[:8]}"
                )
        return failures


def get_event_emitter() -> EventEmitter:
    """FastAPI dependency; overridden in tests"""
    return EventEmitter()

"""
daopath Chain Event Infrastructure

Typed kernel and ACL events, the ordered append-only log they are recorded
in, and the projection base class that folds the log into read models.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          EVENT INFRASTRUCTURE                            │
    │                                                                          │
    │  Chain Events            Event Log              Projections              │
    │  ├─ SetPermission        ├─ Append-only         ├─ Fold                  │
    │  ├─ ChangePermission-    ├─ (block, logIndex)   ├─ Rebuild on            │
    │  │  Manager              │  ordering            │  out-of-order event    │
    │  └─ SetApp               └─ Duplicate drop      └─ Late-subscriber       │
    │                                                    replay                │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Immutable Events: Events are facts observed on chain. They are never
    edited; a correction is a later event.

    Ordering: The log is ordered by (block number, log index). A late
    event is inserted at its position and projections refold.

    Idempotency: The log drops an event whose position it already holds,
    so replaying a range of blocks is harmless.

Usage
─────

    log = EventLog()
    record = log.append(SetPermission(
        block_number=10, log_index=0,
        entity=voting, app=finance, role=CREATE_PAYMENTS_ROLE, allowed=True,
    ))
    projection.apply(record, log)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import bisect
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from daopath.abi import normalize_address, normalize_bytes32

logger = logging.getLogger(__name__)

S = TypeVar("S")

Position = Tuple[int, int]


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all events.

    Each event has a unique ID, the time it was observed and optional
    metadata.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str:
        """Get the event type name."""
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Serialize event to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Deserialize event from dictionary."""
        data = data.copy()
        data.pop("event_type", None)
        return cls(**data)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)


@dataclass
class ChainEvent(Event):
    """An event emitted by a contract, located by block and log index."""
    block_number: int = 0
    log_index: int = 0
    transaction_hash: Optional[str] = None

    @property
    def position(self) -> Position:
        return (self.block_number, self.log_index)


# ════════════════════════════════════════════════════════════════════════════
# KERNEL / ACL EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class SetPermission(ChainEvent):
    """ACL granted (``allowed``) or revoked ``role`` on ``app`` for ``entity``."""
    entity: str = ""
    app: str = ""
    role: str = ""
    allowed: bool = False

    def __post_init__(self) -> None:
        self.entity = normalize_address(self.entity, "entity")
        self.app = normalize_address(self.app, "app")
        self.role = normalize_bytes32(self.role, "role")


@dataclass
class ChangePermissionManager(ChainEvent):
    """ACL set the manager of (``app``, ``role``)."""
    app: str = ""
    role: str = ""
    manager: str = ""

    def __post_init__(self) -> None:
        self.app = normalize_address(self.app, "app")
        self.role = normalize_bytes32(self.role, "role")
        self.manager = normalize_address(self.manager, "manager")


@dataclass
class SetApp(ChainEvent):
    """
    Kernel set ``app`` for (``namespace``, ``app_id``).

    In the ``app`` namespace ``app`` is a proxy address; in the ``base``
    namespace it is the code address every proxy of ``app_id`` delegates to.
    """
    namespace: str = ""
    app_id: str = ""
    app: str = ""

    def __post_init__(self) -> None:
        self.namespace = normalize_bytes32(self.namespace, "namespace")
        self.app_id = normalize_bytes32(self.app_id, "app_id")
        self.app = normalize_address(self.app, "app")


EVENT_TYPES: Dict[str, type] = {
    cls.__name__: cls for cls in (SetPermission, ChangePermissionManager, SetApp)
}


def event_from_dict(data: Dict[str, Any]) -> ChainEvent:
    """Rebuild a chain event from its ``to_dict`` form."""
    event_type = data.get("event_type")
    cls = EVENT_TYPES.get(event_type)
    if cls is None:
        raise ValueError(f"Unknown event type: {event_type!r}")
    return cls.from_dict(data)


# ════════════════════════════════════════════════════════════════════════════
# EVENT LOG
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class EventRecord:
    """A recorded event."""
    sequence_number: int
    event: ChainEvent
    recorded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def position(self) -> Position:
        return self.event.position

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "event": self.event.to_dict(),
            "recorded_at": self.recorded_at,
        }


class EventLog:
    """
    Append-only chain event log kept in (block, log index) order.

    ``sequence_number`` counts arrivals; iteration order is chain order.

    Example:
        log = EventLog()
        log.append(SetPermission(block_number=1, log_index=0, ...))
        for record in log.read_all():
            ...
    """

    def __init__(self):
        self._records: List[EventRecord] = []
        self._positions: List[Position] = []
        self._sequence_number = 0
        self._duplicates = 0
        self._lock = threading.RLock()

    def append(self, event: ChainEvent) -> Optional[EventRecord]:
        """
        Record an event.

        Returns:
            The new record, or None if an event at the same position was
            already recorded
        """
        with self._lock:
            position = event.position
            index = bisect.bisect_left(self._positions, position)
            if index < len(self._positions) and self._positions[index] == position:
                self._duplicates += 1
                logger.debug("Dropping duplicate event at %s", position)
                return None

            self._sequence_number += 1
            record = EventRecord(sequence_number=self._sequence_number, event=event)
            self._positions.insert(index, position)
            self._records.insert(index, record)
            return record

    def read_all(self, from_index: int = 0) -> List[EventRecord]:
        """Records in chain order."""
        with self._lock:
            return list(self._records[from_index:])

    @property
    def last_position(self) -> Optional[Position]:
        with self._lock:
            return self._positions[-1] if self._positions else None

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "recorded_count": len(self._records),
                "duplicate_count": self._duplicates,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# ════════════════════════════════════════════════════════════════════════════
# PROJECTION
# ════════════════════════════════════════════════════════════════════════════


StateCallback = Callable[[Any], None]


class Subscription:
    """Handle returned by ``Projection.subscribe``."""

    def __init__(self, projection: "Projection", callback: StateCallback):
        self._projection = projection
        self.callback = callback

    def unsubscribe(self) -> bool:
        return self._projection.unsubscribe(self)


class Projection(ABC, Generic[S]):
    """
    Base class for read models folded from the event log.

    State objects are immutable; each fold step returns a new state and the
    projection swaps its reference, so a reader holding ``state`` keeps a
    consistent snapshot. Subscribers receive the current state when they
    attach, then every subsequent state.

    Example:
        class SetAppCounter(Projection[int]):
            def initial_state(self) -> int:
                return 0

            def fold(self, state: int, event: ChainEvent) -> int:
                return state + 1 if isinstance(event, SetApp) else state
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._position: Optional[Position] = None
        self._state: S = self.initial_state()
        self._subscriptions: List[Subscription] = []
        self._rebuild_count = 0

    @abstractmethod
    def initial_state(self) -> S:
        """State before any event."""

    @abstractmethod
    def fold(self, state: S, event: ChainEvent) -> S:
        """Return the state after ``event``; return ``state`` itself if unaffected."""

    @property
    def state(self) -> S:
        with self._lock:
            return self._state

    @property
    def position(self) -> Optional[Position]:
        """Position of the last folded event."""
        with self._lock:
            return self._position

    @property
    def rebuild_count(self) -> int:
        with self._lock:
            return self._rebuild_count

    def apply(self, record: EventRecord, log: Optional[EventLog] = None) -> S:
        """
        Fold one newly recorded event.

        An event positioned before the last folded one triggers a rebuild
        from ``log``, which must already contain it.
        """
        with self._lock:
            previous = self._state
            if self._position is not None and record.position < self._position:
                if log is None:
                    raise ValueError(
                        f"Event at {record.position} precedes folded position "
                        f"{self._position} and no log was given to rebuild from"
                    )
                logger.info(
                    "%s: out-of-order event at %s, refolding",
                    type(self).__name__, record.position,
                )
                self._refold(log)
            else:
                self._state = self.fold(self._state, record.event)
                self._position = record.position

            if self._state is not previous:
                self._notify(self._state)
            return self._state

    def rebuild(self, log: EventLog) -> S:
        """Refold from scratch over the whole log."""
        with self._lock:
            previous = self._state
            self._refold(log)
            if self._state is not previous:
                self._notify(self._state)
            return self._state

    def _refold(self, log: EventLog) -> None:
        state = self.initial_state()
        position = None
        for record in log.read_all():
            state = self.fold(state, record.event)
            position = record.position
        self._state = state
        self._position = position
        self._rebuild_count += 1

    def subscribe(self, callback: StateCallback) -> Subscription:
        """Attach ``callback``; it is called with the current state immediately."""
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
            self._call(subscription, self._state)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
                return True
            return False

    def _notify(self, state: S) -> None:
        for subscription in list(self._subscriptions):
            self._call(subscription, state)

    def _call(self, subscription: Subscription, state: S) -> None:
        try:
            subscription.callback(state)
        except Exception:
            logger.exception("%s subscriber failed", type(self).__name__)


__all__ = [
    "Position",
    "Event",
    "ChainEvent",
    "SetPermission",
    "ChangePermissionManager",
    "SetApp",
    "EVENT_TYPES",
    "event_from_dict",
    "EventRecord",
    "EventLog",
    "Subscription",
    "Projection",
]

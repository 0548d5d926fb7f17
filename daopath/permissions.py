"""
daopath Permission Projection

Read model of the ACL: for every (app, role) the set of entities allowed to
perform it and the role's manager, folded from ``SetPermission`` and
``ChangePermissionManager`` events in chain order.

Entries are created on first reference and never deleted. Querying an
entry that was never referenced yields an empty set and no manager.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple

from daopath.abi import normalize_address, normalize_bytes32
from daopath.events import ChainEvent, ChangePermissionManager, Projection, SetPermission

logger = logging.getLogger(__name__)

PermissionKey = Tuple[str, str]


@dataclass(frozen=True)
class PermissionEntry:
    """Who may perform ``role`` on ``app``, and who manages it."""
    app: str
    role: str
    allowed_entities: FrozenSet[str] = frozenset()
    manager: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowedEntities": sorted(self.allowed_entities),
            "manager": self.manager,
        }


class PermissionState:
    """
    Immutable snapshot of every permission entry.

    Apps and roles enumerate in first-reference order.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Optional[Mapping[PermissionKey, PermissionEntry]] = None):
        self._entries = MappingProxyType(dict(entries or {}))

    @classmethod
    def empty(cls) -> "PermissionState":
        return cls()

    def entry(self, app: str, role: str) -> PermissionEntry:
        app = normalize_address(app, "app")
        role = normalize_bytes32(role, "role")
        return self._entries.get((app, role)) or PermissionEntry(app=app, role=role)

    def has_entry(self, app: str, role: str) -> bool:
        return (app, role) in self._entries

    def allowed_entities(self, app: str, role: str) -> FrozenSet[str]:
        return self.entry(app, role).allowed_entities

    def manager(self, app: str, role: str) -> Optional[str]:
        return self.entry(app, role).manager

    def has_permission(self, entity: str, app: str, role: str) -> bool:
        return normalize_address(entity, "entity") in self.allowed_entities(app, role)

    def roles_for(self, app: str) -> List[str]:
        app = normalize_address(app, "app")
        return [role for (entry_app, role) in self._entries if entry_app == app]

    def apps(self) -> List[str]:
        seen: Dict[str, None] = {}
        for app, _role in self._entries:
            seen.setdefault(app, None)
        return list(seen)

    def entries(self) -> Iterator[PermissionEntry]:
        return iter(self._entries.values())

    def with_entry(self, entry: PermissionEntry) -> "PermissionState":
        """Copy of this state with ``entry`` replaced or added."""
        entries = dict(self._entries)
        entries[(entry.app, entry.role)] = entry
        return PermissionState(entries)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """``{app: {role: {allowedEntities, manager}}}``"""
        result: Dict[str, Dict[str, Any]] = {}
        for (app, role), entry in self._entries.items():
            result.setdefault(app, {})[role] = entry.to_dict()
        return result

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PermissionState):
            return NotImplemented
        return dict(self._entries) == dict(other._entries)

    def __repr__(self) -> str:
        return f"PermissionState({len(self._entries)} entries)"


def fold_permission(state: PermissionState, event: ChainEvent) -> PermissionState:
    """
    Apply one ACL event.

    Granting an entity twice or revoking an absent one leaves the entry's
    entities unchanged; a manager change leaves the entities untouched.
    """
    if isinstance(event, SetPermission):
        entry = state.entry(event.app, event.role)
        if event.allowed:
            entities = entry.allowed_entities | {event.entity}
        else:
            entities = entry.allowed_entities - {event.entity}
        if entities == entry.allowed_entities and state.has_entry(entry.app, entry.role):
            return state
        return state.with_entry(replace(entry, allowed_entities=frozenset(entities)))

    if isinstance(event, ChangePermissionManager):
        entry = state.entry(event.app, event.role)
        if entry.manager == event.manager and state.has_entry(entry.app, entry.role):
            return state
        return state.with_entry(replace(entry, manager=event.manager))

    return state


class PermissionProjection(Projection[PermissionState]):
    """
    Live permission read model.

    Example:
        permissions = PermissionProjection()
        permissions.apply(log.append(event), log)
        permissions.has_permission(voting, finance, CREATE_PAYMENTS_ROLE)
    """

    def initial_state(self) -> PermissionState:
        return PermissionState.empty()

    def fold(self, state: PermissionState, event: ChainEvent) -> PermissionState:
        return fold_permission(state, event)

    def allowed_entities(self, app: str, role: str) -> FrozenSet[str]:
        return self.state.allowed_entities(app, role)

    def manager(self, app: str, role: str) -> Optional[str]:
        return self.state.manager(app, role)

    def has_permission(self, entity: str, app: str, role: str) -> bool:
        return self.state.has_permission(entity, app, role)

    def roles_for(self, app: str) -> List[str]:
        return self.state.roles_for(app)

    def apps(self) -> List[str]:
        return self.state.apps()


__all__ = [
    "PermissionEntry",
    "PermissionState",
    "fold_permission",
    "PermissionProjection",
]

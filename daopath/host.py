"""
daopath Host

Facade over one DAO: ingests chain events into a single ordered log that
feeds the permission projection and the app registry, and answers
transaction path queries from atomic snapshots of both.

    events ──▶ EventLog ──┬──▶ PermissionProjection ──┐
                          └──▶ AppRegistry ───────────┤ snapshot()
                                                      ▼
    intent ─────────────────────────────────▶ PathResolver ──▶ TransactionAssembler ──▶ path

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from daopath.abi import HexOrBytes, normalize_address
from daopath.apps import App, AppMetadataProvider, AppRegistry, AppSnapshot
from daopath.callscript import Segment, decode
from daopath.chain import ChainQuery
from daopath.config import DaoPathConfig
from daopath.errors import NoPermission
from daopath.events import ChainEvent, EventLog
from daopath.kernel import decode_set_app_parameters, get_kernel_namespace, is_set_app_intent
from daopath.observability import Layer, correlation_scope, get_logger
from daopath.permissions import PermissionProjection
from daopath.resolver import CancellationToken, Intent, PathResolver, Snapshot
from daopath.transactions import TransactionAssembler, TransactionStep

log = get_logger("host", Layer.HOST)

PathLike = Sequence[Union[TransactionStep, Segment]]


class DaoHost:
    """
    Permission-aware transaction path service for one kernel.

    Example:
        host = DaoHost(kernel, provider, ResilientChainQuery(Web3ChainQuery(w3)))
        host.ingest(events)
        path = host.get_transaction_path(
            Intent(to=finance, method="newImmediatePayment", params=[...]),
            accounts=[wallet],
        )
    """

    def __init__(
        self,
        kernel_address: str,
        provider: AppMetadataProvider,
        chain: ChainQuery,
        config: Optional[DaoPathConfig] = None,
    ):
        self.config = config or DaoPathConfig()
        self.kernel_address = normalize_address(kernel_address, "kernel_address")
        self.event_log = EventLog()
        self.permissions = PermissionProjection()
        self.apps = AppRegistry(self.kernel_address, provider)
        self.resolver = PathResolver(chain, self.config)
        self.assembler = TransactionAssembler(chain, self.config)
        self._identifiers: Dict[str, str] = {}
        self._write_lock = threading.RLock()

    # ── ingestion ────────────────────────────────────────────────────────

    def ingest(self, events: Iterable[ChainEvent]) -> int:
        """
        Record events and fold them into both projections.

        Returns:
            Number of events recorded; duplicates are dropped

        Raises:
            ValueError: an event precedes the log's last position while
                ``events.strict_ordering`` is enabled
        """
        strict = self.config.events.strict_ordering.get()
        recorded = 0
        with self._write_lock:
            for event in events:
                last = self.event_log.last_position
                if strict and last is not None and event.position < last:
                    raise ValueError(
                        f"Event at {event.position} precedes last recorded position {last}"
                    )
                record = self.event_log.append(event)
                if record is None:
                    continue
                self.permissions.apply(record, self.event_log)
                self.apps.apply(record, self.event_log)
                recorded += 1
        if recorded:
            log.debug("Ingested events", count=recorded, position=self.event_log.last_position)
        return recorded

    def snapshot(self) -> Snapshot:
        """Permission and app state as of the same log position."""
        with self._write_lock:
            return Snapshot(permissions=self.permissions.state, apps=self.apps.state)

    # ── paths ────────────────────────────────────────────────────────────

    def calculate_transaction_path(
        self,
        sender: str,
        intent: Intent,
        cancel: Optional[CancellationToken] = None,
    ) -> List[TransactionStep]:
        """Resolve and assemble the path for one sender."""
        with correlation_scope():
            path = self.resolver.resolve(intent, sender, self.snapshot(), cancel)
            if cancel is not None:
                cancel.raise_if_cancelled()
            return self.assembler.assemble(path)

    def get_transaction_path(
        self,
        intent: Intent,
        accounts: Sequence[str],
        cancel: Optional[CancellationToken] = None,
    ) -> List[TransactionStep]:
        """
        First path found trying ``accounts`` in order.

        Raises:
            NoPermission: no account has a path
        """
        last_error: Optional[NoPermission] = None
        for account in accounts:
            try:
                return self.calculate_transaction_path(account, intent, cancel)
            except NoPermission as exc:
                log.debug("No path for account", account=account, reason=str(exc))
                last_error = exc
        depth = last_error.depth if last_error is not None else 0
        raise NoPermission(
            ", ".join(accounts) or "<no accounts>", intent.to, depth,
            "no account has a transaction path",
        )

    def decode_transaction_path(self, script: HexOrBytes) -> List[Segment]:
        """Segments of a callscript; forwarded scripts nest as ``children``."""
        return decode(script)

    def describe_transaction_path(self, path: PathLike) -> List[TransactionStep]:
        """
        Annotate each step with the app it targets and the method it calls.

        Steps to unknown apps, or with call data matching no method in the
        app's current or deprecated functions, are returned unannotated.
        """
        apps = self.snapshot().apps
        return [self._describe_step(step, apps) for step in path]

    def _describe_step(
        self, step: Union[TransactionStep, Segment], apps: AppSnapshot
    ) -> TransactionStep:
        if isinstance(step, Segment):
            children = None
            if step.children is not None:
                children = [self._describe_step(c, apps) for c in step.children]
            step = TransactionStep(from_address=None, to=step.to, data=step.data, children=children)
        elif step.children is not None:
            step = replace(step, children=[self._describe_step(c, apps) for c in step.children])

        annotations: Dict[str, Any] = {"identifier": self._identifiers.get(step.to)}
        app = apps.get(step.to)
        if app is not None:
            annotations["name"] = app.name
            method = app.methods.from_call_data(step.data)
            if method is not None:
                annotations["method"] = method.signature
                annotations["description"] = method.notice
        elif step.to == self.kernel_address:
            annotations["name"] = "Kernel"
            if is_set_app_intent(self.kernel_address, {"to": step.to, "data": step.data}):
                params = decode_set_app_parameters(step.data)
                namespace = get_kernel_namespace(params["namespace"])
                annotations["method"] = "setApp(bytes32,bytes32,address)"
                annotations["description"] = (
                    f"Set {namespace['name'] if namespace else params['namespace']} "
                    f"entry for app {params['app_id']} to {params['app_address']}"
                )
        return replace(step, **{k: v for k, v in annotations.items() if v is not None})

    # ── lookups ──────────────────────────────────────────────────────────

    def get_app(self, address: str) -> Optional[App]:
        return self.apps.get_app(address)

    def get_permission_manager(self, app: str, role: str) -> Optional[str]:
        return self.permissions.manager(app, role)

    def set_app_identifier(self, address: str, identifier: str) -> None:
        """Attach a human label (e.g. ``"Treasury"``) to an app."""
        with self._write_lock:
            self._identifiers[normalize_address(address)] = identifier

    def app_identifier(self, address: str) -> Optional[str]:
        return self._identifiers.get(normalize_address(address))


def do_intent_paths_match(paths: Sequence[PathLike]) -> bool:
    """Whether every path visits the same destinations in the same order."""
    routes = {tuple(step.to for step in path) for path in paths}
    return len(routes) == 1


__all__ = [
    "DaoHost",
    "do_intent_paths_match",
]

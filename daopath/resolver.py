"""
daopath Path Resolver

Finds how a sender can perform an intent: directly when the sender holds
the required role, otherwise through a chain of forwarders found by a
breadth-first search over the forwarder catalog.

Search
──────

    level 1   every forwarder F holding the role on the target
              F wraps script([direct call])

    level n   for each entry (F, script_F) and every unvisited forwarder G
              with canForward(F, G, script_F):
              G wraps script([F.forward(script_F)])

    success   first entry, in frontier order, whose forwarder can forward
              for the sender

Capability checks of one level run concurrently on a bounded worker pool;
results are consumed in frontier order so the outcome does not depend on
scheduling. The resolver only reads the snapshot it is given.

The returned path lists the submitted transaction first, then each call it
triggers, ending with the direct call:

    [G.forward(...), F.forward(...), target.method(...)]

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from daopath.abi import MethodDescriptor, keccak_hex, normalize_address
from daopath.apps import App, AppSnapshot
from daopath.callscript import encode
from daopath.chain import ChainQuery
from daopath.config import DaoPathConfig
from daopath.errors import ArtifactError, NoPermission, ResolutionCancelled
from daopath.observability import Layer, get_logger, timed_operation
from daopath.permissions import PermissionState
from daopath.transactions import (
    TransactionStep,
    create_direct_transaction,
    create_forwarder_transaction,
)

log = get_logger("resolver", Layer.RESOLVER)


@dataclass
class Intent:
    """
    The call a sender ultimately wants executed.

    ``method`` is a descriptor, a full signature (``"newVote(bytes,string)"``)
    or a bare name, in which case the first overload declared is used. A
    trailing mapping in ``params`` beyond the method's arity is taken as
    transaction options (``value``, ``gasPrice``, ``gas``, ``token``).
    """
    to: str
    method: Union[str, MethodDescriptor]
    params: List[Any] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.to = normalize_address(self.to, "to")
        self.params = list(self.params)

    def split_params(self, arity: int) -> Tuple[List[Any], Dict[str, Any]]:
        params = list(self.params)
        options = dict(self.options)
        if len(params) == arity + 1 and isinstance(params[-1], Mapping):
            options = {**params.pop(), **options}
        return params, options


@dataclass(frozen=True)
class Snapshot:
    """Permissions and apps read atomically at the start of a resolution."""
    permissions: PermissionState
    apps: AppSnapshot


class CancellationToken:
    """Lets a caller abandon a resolution between search levels."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ResolutionCancelled("Transaction path resolution was cancelled")


@dataclass
class _Candidate:
    forwarder: str
    script: bytes
    tail: List[TransactionStep]


def find_method(app: App, method: Union[str, MethodDescriptor]) -> MethodDescriptor:
    """
    Resolve an intent's method against the app's current method table.

    A descriptor is matched by selector and replaced by the app's entry, so
    the roles enforced are always the artifact's.

    Raises:
        ArtifactError: no current method matches
    """
    if isinstance(method, MethodDescriptor):
        found = app.methods.by_selector(method.selector)
        label = method.signature
    else:
        found = app.methods.find(method)
        label = method
    if found is None or found.is_deprecated:
        raise ArtifactError(f"{label} not found on ABI for {app.proxy_address}", app.proxy_address)
    return found


class PathResolver:
    """
    Computes transaction paths.

    Example:
        resolver = PathResolver(chain, config)
        path = resolver.resolve(Intent(to=finance, method="newImmediatePayment",
                                       params=[...]), sender, snapshot)
    """

    def __init__(self, chain: ChainQuery, config: Optional[DaoPathConfig] = None):
        self.chain = chain
        self.config = config or DaoPathConfig()

    @property
    def max_depth(self) -> int:
        return self.config.resolver.max_depth.get()

    @timed_operation(log, "resolve")
    def resolve(
        self,
        intent: Intent,
        sender: str,
        snapshot: Snapshot,
        cancel: Optional[CancellationToken] = None,
    ) -> List[TransactionStep]:
        """
        Path for ``sender`` to perform ``intent``.

        Raises:
            ArtifactError: unknown target app, missing ABI or method
            NoPermission: no direct permission and no forwarder chain
            ResolutionCancelled: ``cancel`` was triggered
            RPCError: a capability check failed after retries
        """
        sender = normalize_address(sender, "sender")
        app = snapshot.apps.get(intent.to)
        if app is None:
            raise ArtifactError(f"No artifact found for {intent.to}", intent.to)
        if not app.has_abi:
            raise ArtifactError(f"No ABI specified in artifact for {intent.to}", intent.to)

        method = find_method(app, intent.method)
        params, options = intent.split_params(method.arity)
        direct = create_direct_transaction(sender, app.proxy_address, method, params, options)

        if not method.roles:
            return [direct]

        # Only the first role a method declares is enforced
        role = app.role_bytes(method.roles[0]) or keccak_hex(method.roles[0])
        allowed = snapshot.permissions.allowed_entities(app.proxy_address, role)
        if sender in allowed:
            log.debug("Sender holds role directly", sender=sender, role=role)
            return [direct]
        if not allowed:
            raise NoPermission(sender, intent.to, 0, f"no entity holds {method.roles[0]}")

        return self._search(sender, app.proxy_address, direct, allowed, snapshot, cancel)

    def _search(
        self,
        sender: str,
        target: str,
        direct: TransactionStep,
        allowed: frozenset,
        snapshot: Snapshot,
        cancel: Optional[CancellationToken],
    ) -> List[TransactionStep]:
        catalog = [f.proxy_address for f in snapshot.apps.forwarders]
        visited = {target}
        gas_price = direct.gas_price

        frontier: List[_Candidate] = []
        direct_script = encode([{"to": direct.to, "data": direct.data}])
        for forwarder in catalog:
            if forwarder in allowed and forwarder not in visited:
                frontier.append(_Candidate(forwarder, direct_script, [direct]))
                visited.add(forwarder)

        depth = 0
        max_workers = self.config.resolver.max_concurrent_queries.get()
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="can-forward") as pool:
            while frontier:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                depth += 1

                checks = [(c.forwarder, sender, c.script) for c in frontier]
                for candidate, ok in zip(frontier, self._can_forward_all(pool, checks)):
                    if ok:
                        log.info(
                            "Transaction path found",
                            sender=sender, target=target, forwarders=depth,
                        )
                        submitted = create_forwarder_transaction(
                            sender, candidate.forwarder, candidate.script, gas_price
                        )
                        return [submitted] + candidate.tail

                if depth >= self.max_depth:
                    break
                if cancel is not None:
                    cancel.raise_if_cancelled()
                frontier = self._expand(pool, sender, frontier, catalog, visited, gas_price)

        raise NoPermission(sender, target, depth, "no forwarder chain can forward for sender")

    def _expand(
        self,
        pool: ThreadPoolExecutor,
        sender: str,
        frontier: List[_Candidate],
        catalog: List[str],
        visited: set,
        gas_price: Optional[int],
    ) -> List[_Candidate]:
        pairs = [
            (candidate, forwarder)
            for candidate in frontier
            for forwarder in catalog
            if forwarder not in visited
        ]
        checks = [(c.forwarder, g, c.script) for c, g in pairs]
        next_frontier: List[_Candidate] = []
        for (candidate, forwarder), ok in zip(pairs, self._can_forward_all(pool, checks)):
            if not ok or forwarder in visited:
                continue
            forward_tx = create_forwarder_transaction(
                sender, candidate.forwarder, candidate.script, gas_price
            )
            script = encode([{"to": forward_tx.to, "data": forward_tx.data}])
            next_frontier.append(_Candidate(forwarder, script, [forward_tx] + candidate.tail))
            visited.add(forwarder)
        return next_frontier

    def _can_forward_all(
        self,
        pool: ThreadPoolExecutor,
        checks: Sequence[Tuple[str, str, bytes]],
    ) -> List[bool]:
        futures = [pool.submit(self.chain.can_forward, *check) for check in checks]
        return [bool(f.result()) for f in futures]


__all__ = [
    "Intent",
    "Snapshot",
    "CancellationToken",
    "find_method",
    "PathResolver",
]

"""
daopath App Registry and Forwarder Catalog

Keeps the live list of apps installed in one kernel, in discovery order,
and derives the forwarders among them.

Discovery
─────────

    SetPermission / ChangePermissionManager on app X   → discover X
    SetApp(namespace=app,  appId, X)                   → discover / refresh X
    SetApp(namespace=base, appId, code)                → refresh every app
                                                         with that appId
                                                         (code upgrade)

The kernel is never an app. Metadata comes from an ``AppMetadataProvider``;
an address it cannot resolve, or that belongs to another kernel, is
ignored. Apps are superseded by later records but never removed.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

from daopath.abi import MethodIndex, addresses_equal, normalize_address, normalize_bytes32
from daopath.events import (
    ChainEvent,
    ChangePermissionManager,
    Projection,
    SetApp,
    SetPermission,
)
from daopath.kernel import is_app_address_namespace, is_app_code_namespace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class App:
    """An installed app as seen through its proxy."""
    proxy_address: str
    app_id: str
    code_address: str
    kernel_address: str
    methods: MethodIndex = field(default_factory=MethodIndex, compare=False, repr=False)
    roles: Tuple[Mapping[str, Any], ...] = field(default=(), compare=False)
    is_forwarder: bool = False
    name: Optional[str] = None
    version: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "proxy_address", normalize_address(self.proxy_address, "proxy_address"))
        object.__setattr__(self, "code_address", normalize_address(self.code_address, "code_address"))
        object.__setattr__(self, "kernel_address", normalize_address(self.kernel_address, "kernel_address"))
        object.__setattr__(self, "app_id", normalize_bytes32(self.app_id, "app_id"))

    @property
    def has_abi(self) -> bool:
        return len(self.methods) > 0

    def role_bytes(self, role_name: str) -> Optional[str]:
        """The 32-byte id of a role declared in the artifact."""
        for role in self.roles:
            if role.get("id") == role_name or role.get("name") == role_name:
                return normalize_bytes32(role["bytes"], "role")
        return None

    @classmethod
    def from_artifact(
        cls,
        proxy_address: str,
        app_id: str,
        code_address: str,
        kernel_address: str,
        artifact: Mapping[str, Any],
        is_forwarder: Optional[bool] = None,
    ) -> "App":
        """
        Build an app from its published artifact.

        ``artifact`` follows the package artifact layout: ``abi``,
        ``functions``, ``deprecatedFunctions``, ``roles``, ``appName``,
        ``version``. Without an explicit ``is_forwarder`` an app is a
        forwarder when its ABI exposes ``forward(bytes)``.
        """
        methods = MethodIndex.from_artifact(
            abi=artifact.get("abi"),
            functions=artifact.get("functions"),
            deprecated_functions=artifact.get("deprecatedFunctions"),
        )
        if is_forwarder is None:
            is_forwarder = methods.find("forward(bytes)") is not None
        return cls(
            proxy_address=proxy_address,
            app_id=app_id,
            code_address=code_address,
            kernel_address=kernel_address,
            methods=methods,
            roles=tuple(artifact.get("roles", ())),
            is_forwarder=bool(is_forwarder),
            name=artifact.get("appName") or artifact.get("name"),
            version=artifact.get("version"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proxyAddress": self.proxy_address,
            "appId": self.app_id,
            "codeAddress": self.code_address,
            "kernelAddress": self.kernel_address,
            "isForwarder": self.is_forwarder,
            "name": self.name,
            "version": self.version,
            "methods": [m.signature for m in self.methods],
        }


@runtime_checkable
class AppMetadataProvider(Protocol):
    """Resolves app metadata (app id, code, artifact) for a proxy."""

    def get_app(self, proxy_address: str) -> Optional[App]:
        ...

    def get_app_for_code(self, proxy_address: str, app_id: str, code_address: str) -> Optional[App]:
        ...


class StaticAppMetadataProvider:
    """
    In-memory metadata provider.

    Example:
        provider = StaticAppMetadataProvider([voting_app, finance_app])
        provider.add_version(VOTING_APP_ID, new_code, voting_v2_artifact)
    """

    def __init__(self, apps: Iterable[App] = ()):
        self._apps: Dict[str, App] = {}
        self._versions: Dict[Tuple[str, str], Mapping[str, Any]] = {}
        for app in apps:
            self.add(app)

    def add(self, app: App) -> None:
        self._apps[app.proxy_address] = app

    def add_version(self, app_id: str, code_address: str, artifact: Mapping[str, Any]) -> None:
        key = (normalize_bytes32(app_id), normalize_address(code_address))
        self._versions[key] = artifact

    def get_app(self, proxy_address: str) -> Optional[App]:
        return self._apps.get(normalize_address(proxy_address))

    def get_app_for_code(self, proxy_address: str, app_id: str, code_address: str) -> Optional[App]:
        current = self.get_app(proxy_address)
        if current is None:
            return None
        code_address = normalize_address(code_address)
        artifact = self._versions.get((normalize_bytes32(app_id), code_address))
        if artifact is None:
            return replace(current, code_address=code_address)
        return App.from_artifact(
            proxy_address=current.proxy_address,
            app_id=app_id,
            code_address=code_address,
            kernel_address=current.kernel_address,
            artifact=artifact,
        )


class AppSnapshot:
    """Immutable view of the registered apps, in discovery order."""

    __slots__ = ("_apps",)

    def __init__(self, apps: Optional[Mapping[str, App]] = None):
        self._apps = MappingProxyType(dict(apps or {}))

    def get(self, address: str) -> Optional[App]:
        return self._apps.get(normalize_address(address))

    def with_app(self, app: App) -> "AppSnapshot":
        apps = dict(self._apps)
        apps[app.proxy_address] = app
        return AppSnapshot(apps)

    @property
    def apps(self) -> List[App]:
        return list(self._apps.values())

    @property
    def forwarders(self) -> List[App]:
        return [app for app in self._apps.values() if app.is_forwarder]

    def by_app_id(self, app_id: str) -> List[App]:
        app_id = normalize_bytes32(app_id)
        return [app for app in self._apps.values() if app.app_id == app_id]

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.lower() in self._apps

    def __iter__(self) -> Iterator[App]:
        return iter(self._apps.values())

    def __len__(self) -> int:
        return len(self._apps)

    def __repr__(self) -> str:
        return f"AppSnapshot({len(self._apps)} apps)"


class AppRegistry(Projection[AppSnapshot]):
    """
    Live app list for one kernel, folded from the event log.

    Example:
        registry = AppRegistry(kernel_address, provider)
        registry.apply(log.append(event), log)
        for forwarder in registry.forwarders():
            ...
    """

    def __init__(self, kernel_address: str, provider: AppMetadataProvider):
        self.kernel_address = normalize_address(kernel_address, "kernel_address")
        self.provider = provider
        super().__init__()

    def initial_state(self) -> AppSnapshot:
        return AppSnapshot()

    def fold(self, state: AppSnapshot, event: ChainEvent) -> AppSnapshot:
        if isinstance(event, (SetPermission, ChangePermissionManager)):
            if event.app in state:
                return state
            return self._upsert(state, self.provider.get_app(event.app))

        if isinstance(event, SetApp):
            if is_app_address_namespace(event.namespace):
                return self._upsert(state, self.provider.get_app(event.app))
            if is_app_code_namespace(event.namespace):
                for app in state.by_app_id(event.app_id):
                    state = self._upsert(state, self.provider.get_app_for_code(
                        app.proxy_address, event.app_id, event.app,
                    ))
        return state

    def _upsert(self, state: AppSnapshot, app: Optional[App]) -> AppSnapshot:
        if app is None:
            return state
        if addresses_equal(app.proxy_address, self.kernel_address):
            return state
        if not addresses_equal(app.kernel_address, self.kernel_address):
            logger.debug("Ignoring app %s of kernel %s", app.proxy_address, app.kernel_address)
            return state
        if state.get(app.proxy_address) == app:
            return state
        logger.debug("Registered app %s (%s)", app.proxy_address, app.name)
        return state.with_app(app)

    def get_app(self, address: str) -> Optional[App]:
        return self.state.get(address)

    def apps(self) -> List[App]:
        return self.state.apps

    def forwarders(self) -> List[App]:
        return self.state.forwarders


__all__ = [
    "App",
    "AppMetadataProvider",
    "StaticAppMetadataProvider",
    "AppSnapshot",
    "AppRegistry",
]

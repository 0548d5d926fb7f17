"""
daopath Chain Queries

The read-only contract calls the resolver and assembler depend on, behind a
``ChainQuery`` protocol:

    get_allowance(token, owner, spender)    ERC-20 allowance
    get_balance(token, owner)               ERC-20 balance
    can_forward(forwarder, sender, script)  Forwarder.canForward, revert → False
    forward_fee(forwarder, sender)          ForwarderFee.forwardFee, revert → None
    estimate_gas(tx)                        eth_estimateGas
    get_latest_block_gas_limit()            gas limit of the latest block

``Web3ChainQuery`` talks to a node through web3; ``MockChainQuery`` keeps
everything in memory for tests and dry runs; ``ResilientChainQuery`` wraps
either with per-call timeouts, bounded retry and a circuit breaker, and
surfaces reverts and exhausted calls as ``RPCError`` / ``RPCTimeout``.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Set,
    Tuple,
    TypeVar,
    runtime_checkable,
)

from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from daopath.abi import (
    ERC20_ABI,
    FORWARDER_ABI,
    FORWARDER_FEE_ABI,
    normalize_address,
    to_bytes,
    to_checksum,
    to_hex,
)
from daopath.config import RpcConfig
from daopath.errors import PathError, RPCError, RPCTimeout
from daopath.observability import Layer, get_logger
from daopath.resilience import (
    CircuitBreaker,
    CircuitBreakerError,
    OperationTimeout,
    RetryExhaustedError,
    RetryPolicy,
    Timeout,
)

log = get_logger("chain", Layer.RPC)

T = TypeVar("T")

ForwardFee = Tuple[str, int]


@runtime_checkable
class ChainQuery(Protocol):
    """Read-only chain access used during path resolution."""

    def get_allowance(self, token: str, owner: str, spender: str) -> int:
        ...

    def get_balance(self, token: str, owner: str) -> int:
        ...

    def can_forward(self, forwarder: str, sender: str, script: bytes) -> bool:
        """False when the forwarder reverts or does not implement canForward."""
        ...

    def forward_fee(self, forwarder: str, sender: str) -> Optional[ForwardFee]:
        """(token, amount), or None when the forwarder charges no fee."""
        ...

    def estimate_gas(self, tx: Mapping[str, Any]) -> int:
        ...

    def get_latest_block_gas_limit(self) -> int:
        ...


# ════════════════════════════════════════════════════════════════════════════
# WEB3
# ════════════════════════════════════════════════════════════════════════════


def _call_params(tx: Mapping[str, Any]) -> Dict[str, Any]:
    """Transaction dict in the shape web3 accepts."""
    params: Dict[str, Any] = {}
    if tx.get("from"):
        params["from"] = to_checksum(tx["from"])
    if tx.get("to"):
        params["to"] = to_checksum(tx["to"])
    if tx.get("data") is not None:
        params["data"] = to_hex(to_bytes(tx["data"]))
    if tx.get("value"):
        params["value"] = int(tx["value"])
    return params


class Web3ChainQuery:
    """
    ``ChainQuery`` backed by a web3 connection.

    Example:
        chain = Web3ChainQuery.from_config(DaoPathConfig.from_file("daopath.yaml").rpc)
        chain.can_forward(voting, sender, script)
    """

    def __init__(self, w3: Web3):
        self.w3 = w3

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 10.0) -> "Web3ChainQuery":
        return cls(Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout_seconds})))

    @classmethod
    def from_config(cls, config: RpcConfig) -> "Web3ChainQuery":
        """Connect to ``rpc.provider_url`` with ``rpc.timeout_seconds`` per request."""
        return cls.from_url(config.provider_url.get(), config.timeout_seconds.get())

    def _contract(self, address: str, abi: List[Dict[str, Any]]) -> Any:
        return self.w3.eth.contract(address=to_checksum(address), abi=abi)

    def get_allowance(self, token: str, owner: str, spender: str) -> int:
        contract = self._contract(token, ERC20_ABI)
        return int(contract.functions.allowance(to_checksum(owner), to_checksum(spender)).call())

    def get_balance(self, token: str, owner: str) -> int:
        contract = self._contract(token, ERC20_ABI)
        return int(contract.functions.balanceOf(to_checksum(owner)).call())

    def can_forward(self, forwarder: str, sender: str, script: bytes) -> bool:
        contract = self._contract(forwarder, FORWARDER_ABI)
        try:
            return bool(contract.functions.canForward(to_checksum(sender), to_bytes(script)).call())
        except (ContractLogicError, BadFunctionCallOutput):
            return False

    def forward_fee(self, forwarder: str, sender: str) -> Optional[ForwardFee]:
        contract = self._contract(forwarder, FORWARDER_FEE_ABI)
        try:
            token, amount = contract.functions.forwardFee().call({"from": to_checksum(sender)})
        except (ContractLogicError, BadFunctionCallOutput):
            return None
        return normalize_address(token), int(amount)

    def estimate_gas(self, tx: Mapping[str, Any]) -> int:
        return int(self.w3.eth.estimate_gas(_call_params(tx)))

    def get_latest_block_gas_limit(self) -> int:
        return int(self.w3.eth.get_block("latest")["gasLimit"])


# ════════════════════════════════════════════════════════════════════════════
# MOCK
# ════════════════════════════════════════════════════════════════════════════


class MockChainQuery:
    """
    In-memory ``ChainQuery``.

    Simulates contract state without network calls. Every call is recorded
    in ``calls``; ``fail_next`` injects transport failures.

    Example:
        chain = MockChainQuery()
        chain.allow_forward(voting, sender)
        chain.set_balance(token, sender, 10 ** 18)
    """

    def __init__(self, default_gas: int = 100_000, block_gas_limit: int = 10_000_000):
        self.default_gas = default_gas
        self.block_gas_limit = block_gas_limit
        self.balances: Dict[Tuple[str, str], int] = {}
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self.fees: Dict[str, ForwardFee] = {}
        self.gas_estimates: Dict[str, int] = {}
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self._forwarding: Set[Tuple[str, str]] = set()
        self._failures: Dict[str, List[BaseException]] = defaultdict(list)
        self._lock = threading.Lock()

    def allow_forward(self, forwarder: str, sender: str) -> None:
        self._forwarding.add((normalize_address(forwarder), normalize_address(sender)))

    def set_balance(self, token: str, owner: str, amount: int) -> None:
        self.balances[(normalize_address(token), normalize_address(owner))] = amount

    def set_allowance(self, token: str, owner: str, spender: str, amount: int) -> None:
        key = (normalize_address(token), normalize_address(owner), normalize_address(spender))
        self.allowances[key] = amount

    def set_forward_fee(self, forwarder: str, token: str, amount: int) -> None:
        self.fees[normalize_address(forwarder)] = (normalize_address(token), amount)

    def set_gas_estimate(self, to: str, gas: int) -> None:
        self.gas_estimates[normalize_address(to)] = gas

    def fail_next(self, method: str, exc: BaseException, times: int = 1) -> None:
        """Make the next ``times`` calls to ``method`` raise ``exc``."""
        with self._lock:
            self._failures[method].extend([exc] * times)

    def calls_to(self, method: str) -> List[Tuple[Any, ...]]:
        with self._lock:
            return [args for name, args in self.calls if name == method]

    def _record(self, method: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((method, args))
            if self._failures[method]:
                raise self._failures[method].pop(0)

    def get_allowance(self, token: str, owner: str, spender: str) -> int:
        key = (normalize_address(token), normalize_address(owner), normalize_address(spender))
        self._record("get_allowance", *key)
        return self.allowances.get(key, 0)

    def get_balance(self, token: str, owner: str) -> int:
        key = (normalize_address(token), normalize_address(owner))
        self._record("get_balance", *key)
        return self.balances.get(key, 0)

    def can_forward(self, forwarder: str, sender: str, script: bytes) -> bool:
        key = (normalize_address(forwarder), normalize_address(sender))
        self._record("can_forward", key[0], key[1], to_bytes(script))
        return key in self._forwarding

    def forward_fee(self, forwarder: str, sender: str) -> Optional[ForwardFee]:
        forwarder = normalize_address(forwarder)
        self._record("forward_fee", forwarder, normalize_address(sender))
        return self.fees.get(forwarder)

    def estimate_gas(self, tx: Mapping[str, Any]) -> int:
        self._record("estimate_gas", dict(tx))
        to = tx.get("to")
        if to:
            return self.gas_estimates.get(normalize_address(to), self.default_gas)
        return self.default_gas

    def get_latest_block_gas_limit(self) -> int:
        self._record("get_latest_block_gas_limit")
        return self.block_gas_limit


# ════════════════════════════════════════════════════════════════════════════
# RESILIENT WRAPPER
# ════════════════════════════════════════════════════════════════════════════


class ResilientChainQuery:
    """
    Wraps a ``ChainQuery`` with timeout, retry and circuit breaker.

    Contract reverts and local errors are not retried; a revert surfaces
    at once as ``RPCError``. Transport failures are retried with
    exponential backoff and jitter; once attempts are exhausted the call
    raises ``RPCError``, or ``RPCTimeout`` when the last attempt hit its
    deadline.
    """

    def __init__(
        self,
        inner: ChainQuery,
        config: Optional[RpcConfig] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        config = config or RpcConfig()
        self.inner = inner
        self.timeout_seconds = config.timeout_seconds.get()
        self.retry = RetryPolicy(
            max_attempts=config.max_attempts.get(),
            base_delay_seconds=config.base_delay_seconds.get(),
            max_delay_seconds=config.max_delay_seconds.get(),
            non_retryable_exceptions=(ContractLogicError, PathError, CircuitBreakerError),
            on_retry=self._on_retry,
        )
        self.breaker = breaker or CircuitBreaker(
            "chain-query",
            failure_threshold=config.breaker_failure_threshold.get(),
            timeout_seconds=config.breaker_reset_seconds.get(),
            excluded_exceptions=(ContractLogicError, PathError),
        )

    @staticmethod
    def _on_retry(attempt: int, exc: Exception, delay: float) -> None:
        log.warning(
            "Chain query failed, retrying",
            attempt=attempt, error=str(exc), delay_seconds=round(delay, 3),
        )

    def _invoke(self, method: str, func: Callable[[], T]) -> T:
        attempts = 0
        timeout = Timeout(self.timeout_seconds, name=method)

        def attempt() -> T:
            nonlocal attempts
            attempts += 1
            return self.breaker.call(lambda: timeout.execute(func))

        try:
            return self.retry.execute(attempt)
        except ContractLogicError as exc:
            log.warning("Chain query reverted", error_code="rpc_revert", method=method, error=str(exc))
            raise RPCError(method, attempts, exc) from exc
        except RetryExhaustedError as exc:
            log.error("Chain query exhausted retries", error_code="rpc_error",
                      method=method, attempts=attempts)
            if isinstance(exc.last_exception, OperationTimeout):
                raise RPCTimeout(method, attempts, self.timeout_seconds) from exc.last_exception
            raise RPCError(method, attempts, exc.last_exception) from exc.last_exception
        except CircuitBreakerError as exc:
            raise RPCError(method, attempts, exc) from exc

    def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return self._invoke("get_allowance", lambda: self.inner.get_allowance(token, owner, spender))

    def get_balance(self, token: str, owner: str) -> int:
        return self._invoke("get_balance", lambda: self.inner.get_balance(token, owner))

    def can_forward(self, forwarder: str, sender: str, script: bytes) -> bool:
        return self._invoke("can_forward", lambda: self.inner.can_forward(forwarder, sender, script))

    def forward_fee(self, forwarder: str, sender: str) -> Optional[ForwardFee]:
        return self._invoke("forward_fee", lambda: self.inner.forward_fee(forwarder, sender))

    def estimate_gas(self, tx: Mapping[str, Any]) -> int:
        return self._invoke("estimate_gas", lambda: self.inner.estimate_gas(tx))

    def get_latest_block_gas_limit(self) -> int:
        return self._invoke("get_latest_block_gas_limit", self.inner.get_latest_block_gas_limit)


__all__ = [
    "ForwardFee",
    "ChainQuery",
    "Web3ChainQuery",
    "MockChainQuery",
    "ResilientChainQuery",
]

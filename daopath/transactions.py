"""
daopath Transaction Assembly

Builds the concrete transactions of a path and prepares the one the wallet
submits:

    1. Token staging     balance check, allowance check, approve()
                         pre-transaction when the allowance is short
    2. Forwarding fee    forwardFee() of the submitted forwarder becomes a
                         token requirement with the forwarder as spender
    3. Gas sizing        estimate × fuzz factor, capped below the block gas
                         limit; minimum gas price when none was given

A main step whose pre-transaction is still pending is not gas-estimated:
its call would only succeed once the approval is mined.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from daopath.abi import (
    ERC20_APPROVE,
    FORWARD_SELECTOR,
    HexOrBytes,
    MethodDescriptor,
    normalize_address,
    to_bytes,
    to_hex,
)
from daopath.callscript import encode_forward_call
from daopath.chain import ChainQuery
from daopath.config import DaoPathConfig
from daopath.errors import InsufficientBalance
from daopath.observability import Layer, get_logger, timed_operation

log = get_logger("assembler", Layer.ASSEMBLER)


@dataclass
class TokenRequirement:
    """An ERC-20 allowance a step needs before it can succeed."""
    address: str
    value: int
    spender: Optional[str] = None

    def __post_init__(self) -> None:
        self.address = normalize_address(self.address, "token")
        self.value = int(self.value)
        if self.spender is not None:
            self.spender = normalize_address(self.spender, "spender")

    @classmethod
    def from_options(cls, token: Any) -> Optional["TokenRequirement"]:
        if token is None or isinstance(token, cls):
            return token
        return cls(address=token["address"], value=token["value"], spender=token.get("spender"))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"address": self.address, "value": str(self.value)}
        if self.spender:
            data["spender"] = self.spender
        return data


@dataclass
class TransactionStep:
    """
    One transaction of a path.

    ``from_address`` is None only for steps decoded from a script, where
    the caller is implied by the enclosing forwarder.
    """
    from_address: Optional[str]
    to: str
    data: bytes
    value: Optional[int] = None
    gas: Optional[int] = None
    gas_price: Optional[int] = None
    pretransaction: Optional["TransactionStep"] = None
    token: Optional[TokenRequirement] = None
    allowance_reset_required: bool = False
    description: Optional[str] = None
    name: Optional[str] = None
    identifier: Optional[str] = None
    method: Optional[str] = None
    children: Optional[List["TransactionStep"]] = None

    def __post_init__(self) -> None:
        if self.from_address is not None:
            self.from_address = normalize_address(self.from_address, "from")
        self.to = normalize_address(self.to, "to")
        self.data = to_bytes(self.data)

    @property
    def is_forwarding(self) -> bool:
        return self.data[:4] == FORWARD_SELECTOR

    def call_params(self) -> Dict[str, Any]:
        """Fields a node needs to estimate or execute the call."""
        params: Dict[str, Any] = {"to": self.to, "data": to_hex(self.data)}
        if self.from_address:
            params["from"] = self.from_address
        if self.value:
            params["value"] = self.value
        return params

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"to": self.to, "data": to_hex(self.data)}
        if self.from_address:
            data["from"] = self.from_address
        for key, value in (
            ("value", self.value),
            ("gas", self.gas),
            ("gasPrice", self.gas_price),
            ("description", self.description),
            ("name", self.name),
            ("identifier", self.identifier),
            ("method", self.method),
        ):
            if value is not None:
                data[key] = value
        if self.token is not None:
            data["token"] = self.token.to_dict()
        if self.pretransaction is not None:
            data["pretransaction"] = self.pretransaction.to_dict()
        if self.allowance_reset_required:
            data["allowanceResetRequired"] = True
        if self.children is not None:
            data["children"] = [c.to_dict() for c in self.children]
        return data


def _option(options: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if options.get(name) is not None:
            return options[name]
    return None


def create_direct_transaction(
    sender: str,
    destination: str,
    method: MethodDescriptor,
    params: Sequence[Any],
    options: Optional[Mapping[str, Any]] = None,
) -> TransactionStep:
    """The call the intent ultimately wants, with options merged in."""
    options = options or {}
    value = _option(options, "value")
    gas = _option(options, "gas")
    gas_price = _option(options, "gasPrice", "gas_price")
    return TransactionStep(
        from_address=sender,
        to=destination,
        data=method.encode_call(params),
        value=int(value) if value is not None else None,
        gas=int(gas) if gas is not None else None,
        gas_price=int(gas_price) if gas_price is not None else None,
        token=TokenRequirement.from_options(options.get("token")),
    )


def create_forwarder_transaction(
    sender: str,
    forwarder: str,
    script: HexOrBytes,
    gas_price: Optional[int] = None,
) -> TransactionStep:
    """``forward(script)`` sent to ``forwarder``."""
    return TransactionStep(
        from_address=sender,
        to=forwarder,
        data=encode_forward_call(script),
        gas_price=gas_price,
    )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def recommend_gas_limit(
    estimated: int,
    block_gas_limit: int,
    gas_fuzz_factor: float = 1.5,
    block_gas_limit_factor: float = 0.95,
) -> int:
    """
    Gas limit to send with a transaction.

    The estimate is padded by ``gas_fuzz_factor`` and capped at
    ``block_gas_limit_factor`` of the latest block's limit. An estimate
    already above the cap is returned unchanged.
    """
    upper = _round_half_up(block_gas_limit * block_gas_limit_factor)
    buffered = _round_half_up(estimated * gas_fuzz_factor)
    if estimated > upper:
        return estimated
    if buffered < upper:
        return buffered
    return upper


class TransactionAssembler:
    """
    Turns a resolved path into submittable transactions.

    Example:
        assembler = TransactionAssembler(chain, config)
        path = assembler.assemble(resolver.resolve(intent, sender, snapshot))
    """

    def __init__(self, chain: ChainQuery, config: Optional[DaoPathConfig] = None):
        self.chain = chain
        self.config = config or DaoPathConfig()

    def apply_pretransaction(self, step: TransactionStep) -> TransactionStep:
        """
        Stage an ``approve`` pre-transaction for the step's token requirement.

        Raises:
            InsufficientBalance: the sender holds less than required
        """
        if step.token is None:
            return step

        token = step.token
        spender = token.spender or step.to
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="token-staging") as pool:
            balance_future = pool.submit(self.chain.get_balance, token.address, step.from_address)
            allowance_future = pool.submit(
                self.chain.get_allowance, token.address, step.from_address, spender
            )
            balance = balance_future.result()
            allowance = allowance_future.result()

        if balance < token.value:
            raise InsufficientBalance(token.address, step.from_address, balance, token.value)

        if allowance >= token.value:
            return step

        reset_required = allowance > 0
        if reset_required:
            log.warning(
                "Existing allowance below requirement; some tokens reject approve() "
                "unless the allowance is reset to 0 first",
                owner=step.from_address, spender=spender, token=token.address,
                allowance=str(allowance), required=str(token.value),
            )

        approve = TransactionStep(
            from_address=step.from_address,
            to=token.address,
            data=ERC20_APPROVE.encode_call([spender, token.value]),
        )
        return replace(
            step,
            pretransaction=approve,
            token=None,
            allowance_reset_required=reset_required,
        )

    def apply_forwarding_fee_pretransaction(
        self,
        step: TransactionStep,
        inherited_token: Optional[TokenRequirement] = None,
    ) -> TransactionStep:
        """
        Stage the fee of the forwarder ``step`` calls.

        A nonzero ``forwardFee()`` becomes the step's token requirement,
        with the forwarder as spender. Otherwise ``inherited_token`` (the
        requirement of the call being forwarded) is used.
        """
        fee = self.chain.forward_fee(step.to, step.from_address)
        if fee is not None and fee[1] > 0:
            fee_token, amount = fee
            log.info("Forwarder charges a fee", forwarder=step.to, token=fee_token, amount=str(amount))
            step = replace(step, token=TokenRequirement(fee_token, amount, spender=step.to))
        elif inherited_token is not None and step.token is None:
            step = replace(step, token=inherited_token)
        return self.apply_pretransaction(step)

    def recommended_gas_limit(self, step: TransactionStep) -> int:
        tx_config = self.config.transactions
        return recommend_gas_limit(
            self.chain.estimate_gas(step.call_params()),
            self.chain.get_latest_block_gas_limit(),
            gas_fuzz_factor=tx_config.gas_fuzz_factor.get(),
            block_gas_limit_factor=tx_config.block_gas_limit_factor.get(),
        )

    def _with_gas_price(self, step: TransactionStep) -> TransactionStep:
        if step.gas_price is not None:
            return step
        return replace(step, gas_price=self.config.transactions.min_gas_price_wei)

    @timed_operation(log, "assemble")
    def assemble(self, path: Sequence[TransactionStep]) -> List[TransactionStep]:
        """
        Prepare ``path[0]``, the transaction the wallet submits.

        The remaining steps only describe what ``path[0]`` triggers and get
        a gas price but no gas limit.
        """
        if not path:
            return []

        submitted = path[0]
        if len(path) > 1 and submitted.is_forwarding:
            direct = path[-1]
            inherited = None
            if direct.token is not None:
                inherited = replace(direct.token, spender=direct.token.spender or direct.to)
            submitted = self.apply_forwarding_fee_pretransaction(submitted, inherited)
        else:
            submitted = self.apply_pretransaction(submitted)

        if submitted.pretransaction is not None:
            pretransaction = self._with_gas_price(submitted.pretransaction)
            pretransaction = replace(
                pretransaction, gas=self.recommended_gas_limit(pretransaction)
            )
            submitted = replace(submitted, pretransaction=pretransaction)
        elif submitted.gas is None:
            submitted = replace(submitted, gas=self.recommended_gas_limit(submitted))

        assembled = [self._with_gas_price(submitted)]
        assembled.extend(self._with_gas_price(step) for step in path[1:])
        return assembled


__all__ = [
    "TokenRequirement",
    "TransactionStep",
    "create_direct_transaction",
    "create_forwarder_transaction",
    "recommend_gas_limit",
    "TransactionAssembler",
]

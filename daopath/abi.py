"""
daopath ABI Layer

Address normalization, Keccak hashing and contract method descriptors.

Apps publish two kinds of method metadata: the JSON ABI fragments emitted by
the compiler, and an artifact list of ``functions`` (signature, required
roles, radspec notice) plus ``deprecatedFunctions`` from older versions.
Both are resolved once per app version into ``MethodDescriptor`` records
indexed by their 4-byte selector, so lookups never inspect artifact shapes at
call time.

Usage:

    index = MethodIndex.from_artifact(abi=artifact["abi"],
                                      functions=artifact["functions"])
    method = index.find("newVote")
    data = method.encode_call([script, "metadata"])

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from eth_abi import encode as abi_encode
from web3 import Web3

from daopath.errors import ArtifactError, InvalidAddress

HexOrBytes = Union[str, bytes, bytearray]

_ADDRESS_RE = re.compile(r"^(0x)?[0-9a-fA-F]{40}$")
_BYTES32_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")
_ARRAY_SUFFIX_RE = re.compile(r"\[\d*\]$")


# ════════════════════════════════════════════════════════════════════════════
# ADDRESS AND HEX UTILITIES
# ════════════════════════════════════════════════════════════════════════════

def normalize_address(value: Any, field_name: str = "address") -> str:
    """Return ``0x`` + 40 lower-case hex chars, or raise InvalidAddress."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise InvalidAddress(value, field_name)
        return "0x" + bytes(value).hex()
    if not isinstance(value, str) or not _ADDRESS_RE.match(value):
        raise InvalidAddress(value, field_name)
    value = value.lower()
    return value if value.startswith("0x") else "0x" + value


def addresses_equal(first: Optional[str], second: Optional[str]) -> bool:
    """Compare two addresses ignoring checksum casing."""
    if first is None or second is None:
        return first is second
    return first.lower() == second.lower()


def to_checksum(address: str) -> str:
    """EIP-55 checksummed form, as web3 contract calls require."""
    return Web3.to_checksum_address(normalize_address(address))


def normalize_bytes32(value: Any, field_name: str = "bytes32") -> str:
    """Return ``0x`` + 64 lower-case hex chars."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValueError(f"{field_name}: expected 32 bytes, got {len(value)}")
        return "0x" + bytes(value).hex()
    if not isinstance(value, str) or not _BYTES32_RE.match(value):
        raise ValueError(f"{field_name}: not a 32-byte hex value: {value!r}")
    value = value.lower()
    return value if value.startswith("0x") else "0x" + value


def to_bytes(value: HexOrBytes) -> bytes:
    """Accept bytes or a (0x-prefixed) hex string."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value[:2] in ("0x", "0X") else value
        try:
            return bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError(f"Invalid hex string: {value!r}") from exc
    raise TypeError(f"Expected bytes or hex string, got {type(value).__name__}")


def to_hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def keccak(text: str) -> bytes:
    """Keccak-256 of an ASCII string."""
    return bytes(Web3.keccak(text=text))


def keccak_hex(text: str) -> str:
    return to_hex(keccak(text))


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256(signature)."""
    return keccak(signature)[:4]


# ════════════════════════════════════════════════════════════════════════════
# METHOD DESCRIPTORS
# ════════════════════════════════════════════════════════════════════════════

class MethodKind(Enum):
    """Where a method descriptor came from."""
    CURRENT = "current"          # ABI / functions of the installed version
    DEPRECATED = "deprecated"    # deprecatedFunctions of earlier versions


@dataclass(frozen=True)
class AbiParam:
    """A single ABI input or output."""
    type: str
    name: str = ""
    components: Tuple["AbiParam", ...] = ()

    @property
    def canonical_type(self) -> str:
        """Type as it appears in a function signature."""
        if self.type.startswith("tuple"):
            inner = ",".join(c.canonical_type for c in self.components)
            return f"({inner}){self.type[len('tuple'):]}"
        return self.type

    @classmethod
    def from_abi(cls, fragment: Mapping[str, Any]) -> "AbiParam":
        return cls(
            type=fragment["type"],
            name=fragment.get("name", ""),
            components=tuple(cls.from_abi(c) for c in fragment.get("components", ())),
        )


@dataclass(frozen=True)
class MethodDescriptor:
    """
    A callable contract method.

    ``roles`` lists the role names an ACL requires to call the method
    (empty means unrestricted); ``notice`` is the radspec expression.
    """
    name: str
    inputs: Tuple[AbiParam, ...] = ()
    outputs: Tuple[AbiParam, ...] = ()
    roles: Tuple[str, ...] = ()
    notice: Optional[str] = None
    kind: MethodKind = MethodKind.CURRENT
    state_mutability: str = "nonpayable"

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p.canonical_type for p in self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_selector(self.signature)

    @property
    def arity(self) -> int:
        return len(self.inputs)

    @property
    def is_deprecated(self) -> bool:
        return self.kind is MethodKind.DEPRECATED

    @classmethod
    def from_abi(
        cls,
        fragment: Mapping[str, Any],
        roles: Sequence[str] = (),
        notice: Optional[str] = None,
        kind: MethodKind = MethodKind.CURRENT,
    ) -> "MethodDescriptor":
        """Build from a JSON ABI function fragment."""
        if fragment.get("type", "function") != "function":
            raise ArtifactError(f"ABI fragment is not a function: {fragment.get('type')}")
        return cls(
            name=fragment["name"],
            inputs=tuple(AbiParam.from_abi(p) for p in fragment.get("inputs", ())),
            outputs=tuple(AbiParam.from_abi(p) for p in fragment.get("outputs", ())),
            roles=tuple(roles),
            notice=notice,
            kind=kind,
            state_mutability=fragment.get("stateMutability", "nonpayable"),
        )

    @classmethod
    def from_signature(
        cls,
        signature: str,
        roles: Sequence[str] = (),
        notice: Optional[str] = None,
        kind: MethodKind = MethodKind.CURRENT,
    ) -> "MethodDescriptor":
        """Build from ``name(type,...)`` when no ABI fragment is available."""
        name, types = parse_signature(signature)
        return cls(
            name=name,
            inputs=tuple(AbiParam(type=t) for t in types),
            roles=tuple(roles),
            notice=notice,
            kind=kind,
        )

    def encode_call(self, params: Sequence[Any]) -> bytes:
        """ABI-encode a call: selector followed by the encoded arguments."""
        if len(params) != self.arity:
            raise ArtifactError(
                f"{self.signature} expects {self.arity} parameter(s), got {len(params)}"
            )
        types = [p.canonical_type for p in self.inputs]
        values = [_coerce(p, v) for p, v in zip(self.inputs, params)]
        return self.selector + abi_encode(types, values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "signature": self.signature,
            "selector": to_hex(self.selector),
            "roles": list(self.roles),
            "notice": self.notice,
            "kind": self.kind.value,
        }


def parse_signature(signature: str) -> Tuple[str, List[str]]:
    """Split ``name(t1,(t2,t3)[],t4)`` into its name and top-level types."""
    open_idx = signature.find("(")
    if open_idx <= 0 or not signature.endswith(")"):
        raise ArtifactError(f"Malformed function signature: {signature!r}")
    name = signature[:open_idx]
    body = signature[open_idx + 1:-1]

    types: List[str] = []
    depth = 0
    current = ""
    for char in body:
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char
    if current:
        types.append(current)
    return name, types


def _coerce(param: AbiParam, value: Any) -> Any:
    """Convert loosely typed intent params into what eth_abi expects."""
    return _coerce_type(param.type, value, param.components)


def _coerce_type(type_str: str, value: Any, components: Tuple[AbiParam, ...] = ()) -> Any:
    if _ARRAY_SUFFIX_RE.search(type_str):
        element_type = _ARRAY_SUFFIX_RE.sub("", type_str)
        return [_coerce_type(element_type, v, components) for v in value]
    if type_str == "tuple":
        if isinstance(value, Mapping):
            value = [value[c.name] for c in components]
        return tuple(_coerce(c, v) for c, v in zip(components, value))
    if type_str == "address":
        return to_checksum(value)
    if type_str.startswith("bytes") and isinstance(value, str):
        return to_bytes(value)
    if type_str.startswith(("uint", "int")) and isinstance(value, str):
        return int(value, 0)
    return value


# ════════════════════════════════════════════════════════════════════════════
# METHOD INDEX
# ════════════════════════════════════════════════════════════════════════════

class MethodIndex:
    """
    Selector-indexed method table for one app version.

    Current methods shadow deprecated ones with the same selector. Name
    lookups return the first overload in declaration order.
    """

    def __init__(self, methods: Iterable[MethodDescriptor] = ()):
        self._methods: List[MethodDescriptor] = []
        self._by_selector: Dict[bytes, MethodDescriptor] = {}
        for method in methods:
            self.add(method)

    def add(self, method: MethodDescriptor) -> None:
        existing = self._by_selector.get(method.selector)
        if existing is not None and not (existing.is_deprecated and not method.is_deprecated):
            return
        if existing is not None:
            self._methods.remove(existing)
        self._methods.append(method)
        self._by_selector[method.selector] = method

    @classmethod
    def from_artifact(
        cls,
        abi: Optional[Sequence[Mapping[str, Any]]] = None,
        functions: Optional[Sequence[Mapping[str, Any]]] = None,
        deprecated_functions: Optional[Mapping[str, Sequence[Mapping[str, Any]]]] = None,
    ) -> "MethodIndex":
        """Merge compiler ABI fragments with artifact function metadata."""
        metadata = {f["sig"]: f for f in (functions or ())}
        index = cls()

        for fragment in abi or ():
            if fragment.get("type", "function") != "function":
                continue
            method = MethodDescriptor.from_abi(fragment)
            meta = metadata.pop(method.signature, None)
            if meta is not None:
                method = MethodDescriptor.from_abi(
                    fragment,
                    roles=meta.get("roles", ()),
                    notice=meta.get("notice"),
                )
            index.add(method)

        # Declared in the artifact but missing from the ABI
        for sig, meta in metadata.items():
            index.add(MethodDescriptor.from_signature(
                sig, roles=meta.get("roles", ()), notice=meta.get("notice"),
            ))

        for version_functions in (deprecated_functions or {}).values():
            for meta in version_functions:
                index.add(MethodDescriptor.from_signature(
                    meta["sig"],
                    roles=meta.get("roles", ()),
                    notice=meta.get("notice"),
                    kind=MethodKind.DEPRECATED,
                ))
        return index

    def by_selector(self, selector: bytes) -> Optional[MethodDescriptor]:
        return self._by_selector.get(bytes(selector[:4]))

    def from_call_data(self, data: HexOrBytes) -> Optional[MethodDescriptor]:
        """Find the method a piece of call data invokes."""
        raw = to_bytes(data)
        if len(raw) < 4:
            return None
        return self.by_selector(raw[:4])

    def find(self, name_or_signature: str) -> Optional[MethodDescriptor]:
        """Look up a current method by full signature or by bare name."""
        full = "(" in name_or_signature and name_or_signature.endswith(")")
        for method in self._methods:
            if method.is_deprecated:
                continue
            if full and method.signature == name_or_signature:
                return method
            if not full and method.name == name_or_signature:
                return method
        return None

    def __iter__(self) -> Iterator[MethodDescriptor]:
        return iter(self._methods)

    def __len__(self) -> int:
        return len(self._methods)

    def __contains__(self, selector: bytes) -> bool:
        return bytes(selector) in self._by_selector


# ════════════════════════════════════════════════════════════════════════════
# STANDARD INTERFACES
# ════════════════════════════════════════════════════════════════════════════

ERC20_ABI: List[Dict[str, Any]] = [
    {
        "type": "function", "name": "balanceOf", "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function", "name": "allowance", "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function", "name": "approve", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

FORWARDER_ABI: List[Dict[str, Any]] = [
    {
        "type": "function", "name": "forward", "stateMutability": "nonpayable",
        "inputs": [{"name": "_evmScript", "type": "bytes"}],
        "outputs": [],
    },
    {
        "type": "function", "name": "canForward", "stateMutability": "view",
        "inputs": [
            {"name": "_sender", "type": "address"},
            {"name": "_evmCallScript", "type": "bytes"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function", "name": "isForwarder", "stateMutability": "pure",
        "inputs": [],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

FORWARDER_FEE_ABI: List[Dict[str, Any]] = [
    {
        "type": "function", "name": "forwardFee", "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "", "type": "address"},
            {"name": "", "type": "uint256"},
        ],
    },
]

ERC20_APPROVE = MethodDescriptor.from_abi(ERC20_ABI[2])
FORWARD = MethodDescriptor.from_abi(FORWARDER_ABI[0])

# function forward(bytes)
FORWARD_SELECTOR = bytes.fromhex("d948d468")


__all__ = [
    "normalize_address",
    "addresses_equal",
    "to_checksum",
    "normalize_bytes32",
    "to_bytes",
    "to_hex",
    "keccak",
    "keccak_hex",
    "function_selector",
    "MethodKind",
    "AbiParam",
    "MethodDescriptor",
    "parse_signature",
    "MethodIndex",
    "ERC20_ABI",
    "FORWARDER_ABI",
    "FORWARDER_FEE_ABI",
    "ERC20_APPROVE",
    "FORWARD",
    "FORWARD_SELECTOR",
]

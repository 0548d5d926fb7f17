"""
daopath Kernel helpers

Kernel namespaces and ``setApp`` call decoding.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from eth_abi import decode as abi_decode

from daopath.abi import (
    HexOrBytes,
    addresses_equal,
    function_selector,
    keccak_hex,
    normalize_address,
    to_bytes,
    to_hex,
)

CORE_NAMESPACE = keccak_hex("core")
APP_ADDR_NAMESPACE = keccak_hex("app")
APP_BASES_NAMESPACE = keccak_hex("base")

KERNEL_NAMESPACE_NAMES: Dict[str, str] = {
    CORE_NAMESPACE: "Core",
    APP_ADDR_NAMESPACE: "Default apps",
    APP_BASES_NAMESPACE: "App code",
}

SET_APP_SIGNATURE = "setApp(bytes32,bytes32,address)"
SET_APP_SELECTOR = function_selector(SET_APP_SIGNATURE)


def decode_set_app_parameters(data: HexOrBytes) -> Dict[str, str]:
    """
    Decode ``Kernel.setApp()`` call data.

    Returns:
        ``{"namespace", "app_id", "app_address"}`` as normalized hex

    Raises:
        ValueError: if ``data`` is not a ``setApp`` call
    """
    raw = to_bytes(data)
    if raw[:4] != SET_APP_SELECTOR:
        raise ValueError(f"Not a {SET_APP_SIGNATURE} call: selector {to_hex(raw[:4])}")
    namespace, app_id, app_address = abi_decode(
        ["bytes32", "bytes32", "address"], raw[4:]
    )
    return {
        "namespace": to_hex(namespace),
        "app_id": to_hex(app_id),
        "app_address": normalize_address(app_address),
    }


def get_kernel_namespace(namespace_hash: str) -> Optional[Dict[str, str]]:
    """Human name of a kernel namespace, or None if it is not one."""
    namespace_hash = namespace_hash.lower()
    name = KERNEL_NAMESPACE_NAMES.get(namespace_hash)
    if name is None:
        return None
    return {"name": name, "hash": namespace_hash}


def is_app_code_namespace(namespace_hash: str) -> bool:
    return namespace_hash.lower() == APP_BASES_NAMESPACE


def is_app_address_namespace(namespace_hash: str) -> bool:
    return namespace_hash.lower() == APP_ADDR_NAMESPACE


def is_set_app_intent(kernel_address: str, step: Mapping[str, Any]) -> bool:
    """Whether a transaction step calls ``setApp`` on the kernel."""
    if not addresses_equal(kernel_address, step.get("to")):
        return False
    data = step.get("data")
    if not data:
        return False
    return to_bytes(data)[:4] == SET_APP_SELECTOR


__all__ = [
    "CORE_NAMESPACE",
    "APP_ADDR_NAMESPACE",
    "APP_BASES_NAMESPACE",
    "KERNEL_NAMESPACE_NAMES",
    "SET_APP_SIGNATURE",
    "SET_APP_SELECTOR",
    "decode_set_app_parameters",
    "get_kernel_namespace",
    "is_app_code_namespace",
    "is_app_address_namespace",
    "is_set_app_intent",
]

"""
daopath — Permission-aware transaction paths for Aragon-style DAOs

Given an intent (a contract call a user wants executed) and the DAO's live
permission state, daopath finds how the user can actually perform it:
directly when they hold the required role, or through a chain of forwarder
apps (voting, token managers, agents) that will relay the call for them.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                                                                          │
    │  LAYER 3: SERVICE                                                       │
    │    host.py           Per-DAO facade: ingest, snapshot, path queries     │
    │    cli.py            Offline script, gas and config tooling             │
    │                                                                          │
    │  LAYER 2: PATHS                                                         │
    │    resolver.py       Direct check and forwarder breadth-first search    │
    │    transactions.py   Token staging, forwarding fees, gas sizing         │
    │    chain.py          Chain reads behind retries and a circuit breaker   │
    │                                                                          │
    │  LAYER 1: STATE                                                         │
    │    events.py         Ordered event log and projection base              │
    │    permissions.py    ACL projection                                     │
    │    apps.py           Installed app registry                             │
    │    kernel.py         Kernel namespaces and setApp decoding              │
    │                                                                          │
    │  LAYER 0: CODECS                                                        │
    │    callscript.py     EVM callscript encode/decode                       │
    │    abi.py            Method descriptors, selectors, address helpers     │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Callscript: A byte string listing calls for a forwarder to make, each a
    20-byte target, a 4-byte length and the call data, after a 4-byte spec id.

    Forwarder: An app implementing forward(bytes) and canForward(address,bytes).
    It executes a callscript on behalf of a sender it approves of.

    Transaction path: The transactions that realize an intent. The first is
    the one submitted; each following entry is the call the previous one
    triggers, ending with the direct call to the target.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.3.0"


# Lazy imports to keep `import daopath` free of web3 start-up cost
def __getattr__(name):
    """Lazy import daopath modules on first access."""

    if name in ("Segment", "encode", "decode", "encode_forward_call",
                "is_forward_call", "parse_forward_call", "flatten", "CALLSCRIPT_ID"):
        from daopath import callscript
        return getattr(callscript, name)

    if name in ("MethodDescriptor", "MethodIndex", "AbiParam", "function_selector",
                "keccak", "keccak_hex", "normalize_address", "addresses_equal"):
        from daopath import abi
        return getattr(abi, name)

    if name in ("SetPermission", "ChangePermissionManager", "SetApp", "EventLog",
                "Projection"):
        from daopath import events
        return getattr(events, name)

    if name in ("PermissionState", "PermissionProjection"):
        from daopath import permissions
        return getattr(permissions, name)

    if name in ("App", "AppRegistry", "AppSnapshot", "StaticAppMetadataProvider"):
        from daopath import apps
        return getattr(apps, name)

    if name in ("ChainQuery", "Web3ChainQuery", "MockChainQuery", "ResilientChainQuery"):
        from daopath import chain
        return getattr(chain, name)

    if name in ("TransactionStep", "TokenRequirement", "TransactionAssembler",
                "recommend_gas_limit"):
        from daopath import transactions
        return getattr(transactions, name)

    if name in ("Intent", "PathResolver", "CancellationToken", "Snapshot"):
        from daopath import resolver
        return getattr(resolver, name)

    if name in ("DaoHost", "do_intent_paths_match"):
        from daopath import host
        return getattr(host, name)

    if name == "DaoPathConfig":
        from daopath import config
        return getattr(config, name)

    if name in ("PathError", "InvalidScript", "InvalidAddress", "ArtifactError",
                "NoPermission", "InsufficientBalance", "ResolutionCancelled",
                "RPCError", "RPCTimeout", "ConfigError"):
        from daopath import errors
        return getattr(errors, name)

    raise AttributeError(f"module 'daopath' has no attribute {name!r}")


__all__ = [
    "__version__",
]

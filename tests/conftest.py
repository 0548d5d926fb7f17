import itertools
import pathlib
import sys
from types import SimpleNamespace

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import daopath`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from daopath.abi import keccak_hex  # noqa: E402
from daopath.apps import App, StaticAppMetadataProvider  # noqa: E402
from daopath.chain import MockChainQuery  # noqa: E402
from daopath.config import DaoPathConfig  # noqa: E402
from daopath.events import SetPermission  # noqa: E402
from daopath.host import DaoHost  # noqa: E402


# ════════════════════════════════════════════════════════════════════════════
# SAMPLE DAO
# ════════════════════════════════════════════════════════════════════════════

KERNEL = "0x" + "11" * 20
VOTING = "0x" + "22" * 20
FINANCE = "0x" + "33" * 20
TOKEN_MANAGER = "0x" + "44" * 20
VAULT = "0x" + "55" * 20
SENDER = "0x" + "aa" * 20
OTHER = "0x" + "bb" * 20
TOKEN = "0x" + "ee" * 20

VOTING_CODE = "0x" + "c1" * 20
FINANCE_CODE = "0x" + "c2" * 20
TOKEN_MANAGER_CODE = "0x" + "c3" * 20

VOTING_APP_ID = keccak_hex("voting.aragonpm.eth")
FINANCE_APP_ID = keccak_hex("finance.aragonpm.eth")
TOKEN_MANAGER_APP_ID = keccak_hex("token-manager.aragonpm.eth")


def _role(role_id: str, name: str) -> dict:
    return {"id": role_id, "name": name, "bytes": keccak_hex(role_id)}


_FORWARDER_FRAGMENTS = [
    {
        "type": "function", "name": "forward",
        "inputs": [{"name": "_evmScript", "type": "bytes"}], "outputs": [],
    },
    {
        "type": "function", "name": "canForward", "stateMutability": "view",
        "inputs": [
            {"name": "_sender", "type": "address"},
            {"name": "_evmCallScript", "type": "bytes"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

VOTING_ARTIFACT = {
    "appName": "voting.aragonpm.eth",
    "version": "2.1.0",
    "roles": [_role("CREATE_VOTES_ROLE", "Create new votes")],
    "abi": _FORWARDER_FRAGMENTS + [
        {
            "type": "function", "name": "newVote",
            "inputs": [
                {"name": "_executionScript", "type": "bytes"},
                {"name": "_metadata", "type": "string"},
            ],
            "outputs": [{"name": "voteId", "type": "uint256"}],
        },
    ],
    "functions": [
        {"sig": "forward(bytes)", "roles": [], "notice": "Creates a vote to execute the desired action"},
        {"sig": "newVote(bytes,string)", "roles": ["CREATE_VOTES_ROLE"], "notice": "Create a new vote"},
    ],
}

FINANCE_ARTIFACT = {
    "appName": "finance.aragonpm.eth",
    "version": "2.0.0",
    "roles": [_role("CREATE_PAYMENTS_ROLE", "Create new payments")],
    "abi": [
        {
            "type": "function", "name": "newImmediatePayment",
            "inputs": [
                {"name": "_token", "type": "address"},
                {"name": "_receiver", "type": "address"},
                {"name": "_amount", "type": "uint256"},
                {"name": "_reference", "type": "string"},
            ],
            "outputs": [],
        },
        {
            "type": "function", "name": "deposit", "stateMutability": "payable",
            "inputs": [
                {"name": "_token", "type": "address"},
                {"name": "_amount", "type": "uint256"},
                {"name": "_reference", "type": "string"},
            ],
            "outputs": [],
        },
    ],
    "functions": [
        {
            "sig": "newImmediatePayment(address,address,uint256,string)",
            "roles": ["CREATE_PAYMENTS_ROLE"],
            "notice": "Create a new payment of `_amount` to `_receiver`",
        },
        {"sig": "deposit(address,uint256,string)", "roles": [], "notice": "Deposit `_amount`"},
    ],
    "deprecatedFunctions": {
        "1.0.0": [
            {"sig": "newPayment(address,address,uint256,uint64,uint64,uint64,string)",
             "roles": ["CREATE_PAYMENTS_ROLE"], "notice": "Create a new payment"},
        ],
    },
}

TOKEN_MANAGER_ARTIFACT = {
    "appName": "token-manager.aragonpm.eth",
    "version": "2.0.0",
    "roles": [_role("MINT_ROLE", "Mint tokens")],
    "abi": _FORWARDER_FRAGMENTS + [
        {
            "type": "function", "name": "mint",
            "inputs": [
                {"name": "_receiver", "type": "address"},
                {"name": "_amount", "type": "uint256"},
            ],
            "outputs": [],
        },
    ],
    "functions": [
        {"sig": "forward(bytes)", "roles": [], "notice": "Execute desired action as a token holder"},
        {"sig": "mint(address,uint256)", "roles": ["MINT_ROLE"], "notice": "Mint `_amount` tokens"},
    ],
}


def make_apps() -> dict:
    return {
        "voting": App.from_artifact(VOTING, VOTING_APP_ID, VOTING_CODE, KERNEL, VOTING_ARTIFACT),
        "finance": App.from_artifact(FINANCE, FINANCE_APP_ID, FINANCE_CODE, KERNEL, FINANCE_ARTIFACT),
        "token_manager": App.from_artifact(
            TOKEN_MANAGER, TOKEN_MANAGER_APP_ID, TOKEN_MANAGER_CODE, KERNEL, TOKEN_MANAGER_ARTIFACT,
        ),
    }


@pytest.fixture
def dao():
    """Addresses, ids and artifacts of the sample DAO."""
    return SimpleNamespace(
        kernel=KERNEL,
        voting=VOTING,
        finance=FINANCE,
        token_manager=TOKEN_MANAGER,
        vault=VAULT,
        sender=SENDER,
        other=OTHER,
        token=TOKEN,
        voting_app_id=VOTING_APP_ID,
        finance_app_id=FINANCE_APP_ID,
        token_manager_app_id=TOKEN_MANAGER_APP_ID,
        voting_artifact=VOTING_ARTIFACT,
        finance_artifact=FINANCE_ARTIFACT,
        token_manager_artifact=TOKEN_MANAGER_ARTIFACT,
        role=keccak_hex,
    )


@pytest.fixture
def apps():
    return make_apps()


@pytest.fixture
def provider(apps):
    return StaticAppMetadataProvider(apps.values())


@pytest.fixture
def chain():
    return MockChainQuery()


@pytest.fixture
def config():
    return DaoPathConfig()


@pytest.fixture
def host(provider, chain, config):
    return DaoHost(KERNEL, provider, chain, config)


@pytest.fixture
def grant(host):
    """Ingest a SetPermission at the next block: grant(entity, app, "ROLE_ID", allowed=True)."""
    blocks = itertools.count(1)

    def _grant(entity, app, role_id, allowed=True):
        event = SetPermission(
            block_number=next(blocks), log_index=0,
            entity=entity, app=app, role=keccak_hex(role_id), allowed=allowed,
        )
        host.ingest([event])
        return event

    return _grant

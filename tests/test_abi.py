"""
Tests for the ABI layer: address helpers, method descriptors and the
selector-indexed method table.
"""

import pytest
from eth_abi import decode as abi_decode

from daopath.abi import (
    ERC20_APPROVE,
    FORWARD,
    FORWARD_SELECTOR,
    MethodDescriptor,
    MethodIndex,
    MethodKind,
    addresses_equal,
    function_selector,
    keccak_hex,
    normalize_address,
    normalize_bytes32,
    parse_signature,
    to_bytes,
)
from daopath.errors import ArtifactError, InvalidAddress


class TestAddressHelpers:
    """Tests for address and hex normalization."""

    def test_normalize_lowercases(self):
        assert normalize_address("0xCAFE1A77E84698C83CA8931F54A755176EF75F2C") == \
            "0xcafe1a77e84698c83ca8931f54a755176ef75f2c"

    def test_normalize_adds_prefix(self):
        assert normalize_address("ab" * 20) == "0x" + "ab" * 20

    def test_normalize_accepts_raw_bytes(self):
        assert normalize_address(b"\x01" * 20) == "0x" + "01" * 20

    @pytest.mark.parametrize("value", ["0x1234", "0x" + "zz" * 20, None, 42, b"\x01" * 19])
    def test_normalize_rejects(self, value):
        """Malformed addresses raise InvalidAddress, which is also a ValueError."""
        with pytest.raises(InvalidAddress):
            normalize_address(value)
        with pytest.raises(ValueError):
            normalize_address(value)

    def test_addresses_equal_ignores_case(self):
        assert addresses_equal("0xABCDEF" + "0" * 34, "0xabcdef" + "0" * 34)
        assert not addresses_equal("0x" + "1" * 40, None)
        assert addresses_equal(None, None)

    def test_normalize_bytes32(self):
        role = keccak_hex("MINT_ROLE")
        assert normalize_bytes32(role.upper().replace("0X", "0x")) == role
        with pytest.raises(ValueError):
            normalize_bytes32("0x1234")

    def test_to_bytes(self):
        assert to_bytes("0xcafe") == b"\xca\xfe"
        assert to_bytes("CAFE") == b"\xca\xfe"
        assert to_bytes(bytearray(b"\x01")) == b"\x01"
        with pytest.raises(TypeError):
            to_bytes(12)


class TestSelectors:
    """Tests for keccak selectors."""

    def test_forward_selector(self):
        """forward(bytes) hashes to the well-known selector."""
        assert function_selector("forward(bytes)") == FORWARD_SELECTOR
        assert FORWARD.selector == FORWARD_SELECTOR

    def test_approve_selector(self):
        assert ERC20_APPROVE.selector.hex() == "095ea7b3"

    def test_transfer_selector(self):
        assert function_selector("transfer(address,uint256)").hex() == "a9059cbb"


class TestMethodDescriptor:
    """Tests for MethodDescriptor."""

    def test_signature_from_abi(self):
        method = MethodDescriptor.from_abi({
            "type": "function", "name": "newVote",
            "inputs": [{"name": "s", "type": "bytes"}, {"name": "m", "type": "string"}],
        })
        assert method.signature == "newVote(bytes,string)"
        assert method.arity == 2

    def test_tuple_signature(self):
        method = MethodDescriptor.from_abi({
            "type": "function", "name": "submit",
            "inputs": [{
                "name": "order", "type": "tuple[]",
                "components": [{"name": "a", "type": "address"}, {"name": "v", "type": "uint256"}],
            }],
        })
        assert method.signature == "submit((address,uint256)[])"

    def test_non_function_fragment_rejected(self):
        with pytest.raises(ArtifactError):
            MethodDescriptor.from_abi({"type": "event", "name": "Transfer", "inputs": []})

    def test_encode_call(self):
        """Addresses, hex integers and hex bytes are coerced before encoding."""
        spender = "0x" + "ab" * 20
        data = ERC20_APPROVE.encode_call([spender, "0x10"])
        assert data[:4] == ERC20_APPROVE.selector
        decoded_spender, amount = abi_decode(["address", "uint256"], data[4:])
        assert decoded_spender.lower() == spender
        assert amount == 16

    def test_encode_call_wrong_arity(self):
        with pytest.raises(ArtifactError, match="expects 2"):
            ERC20_APPROVE.encode_call(["0x" + "ab" * 20])

    def test_from_signature(self):
        method = MethodDescriptor.from_signature(
            "newPayment(address,address,uint256,uint64,uint64,uint64,string)",
            roles=["CREATE_PAYMENTS_ROLE"], kind=MethodKind.DEPRECATED,
        )
        assert method.arity == 7
        assert method.is_deprecated
        assert method.roles == ("CREATE_PAYMENTS_ROLE",)

    def test_parse_signature_nested(self):
        assert parse_signature("f(uint256,(address,bytes)[],bool)") == (
            "f", ["uint256", "(address,bytes)[]", "bool"],
        )
        assert parse_signature("g()") == ("g", [])
        with pytest.raises(ArtifactError):
            parse_signature("broken")


class TestMethodIndex:
    """Tests for MethodIndex."""

    def test_from_artifact_merges_metadata(self, dao):
        index = MethodIndex.from_artifact(
            abi=dao.finance_artifact["abi"],
            functions=dao.finance_artifact["functions"],
            deprecated_functions=dao.finance_artifact["deprecatedFunctions"],
        )
        payment = index.find("newImmediatePayment")
        assert payment.roles == ("CREATE_PAYMENTS_ROLE",)
        assert payment.notice.startswith("Create a new payment")
        assert index.find("deposit").state_mutability == "payable"

    def test_find_skips_deprecated(self, dao):
        index = MethodIndex.from_artifact(
            abi=dao.finance_artifact["abi"],
            functions=dao.finance_artifact["functions"],
            deprecated_functions=dao.finance_artifact["deprecatedFunctions"],
        )
        assert index.find("newPayment") is None
        selector = function_selector(
            "newPayment(address,address,uint256,uint64,uint64,uint64,string)"
        )
        assert index.by_selector(selector).is_deprecated

    def test_find_by_full_signature(self, dao):
        index = MethodIndex.from_artifact(abi=dao.voting_artifact["abi"])
        assert index.find("newVote(bytes,string)").name == "newVote"
        assert index.find("newVote(bytes)") is None

    def test_current_shadows_deprecated(self):
        deprecated = MethodDescriptor.from_signature("mint(address,uint256)", kind=MethodKind.DEPRECATED)
        current = MethodDescriptor.from_signature("mint(address,uint256)", roles=["MINT_ROLE"])
        index = MethodIndex([deprecated, current])
        assert len(index) == 1
        assert index.by_selector(current.selector) is current

        # A later deprecated entry does not replace the current one
        index.add(deprecated)
        assert index.by_selector(current.selector) is current

    def test_from_call_data(self):
        index = MethodIndex([ERC20_APPROVE])
        data = ERC20_APPROVE.encode_call(["0x" + "ab" * 20, 1])
        assert index.from_call_data(data) is ERC20_APPROVE
        assert index.from_call_data("0x12") is None
        assert ERC20_APPROVE.selector in index

    def test_functions_without_abi(self):
        """Artifact functions missing from the ABI are still indexed."""
        index = MethodIndex.from_artifact(functions=[
            {"sig": "mint(address,uint256)", "roles": ["MINT_ROLE"]},
        ])
        assert index.find("mint").roles == ("MINT_ROLE",)

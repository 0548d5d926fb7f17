"""
Tests for transaction assembly: gas sizing, token staging and forwarding
fees.
"""

import pytest

from daopath.abi import ERC20_APPROVE
from daopath.callscript import encode
from daopath.chain import MockChainQuery
from daopath.config import GWEI, DaoPathConfig
from daopath.errors import InsufficientBalance
from daopath.transactions import (
    TokenRequirement,
    TransactionAssembler,
    TransactionStep,
    create_direct_transaction,
    create_forwarder_transaction,
    recommend_gas_limit,
)


MIN_GAS_PRICE = 20 * GWEI


@pytest.fixture
def payment(apps):
    return apps["finance"].methods.find("newImmediatePayment")


@pytest.fixture
def assembler(chain, config):
    return TransactionAssembler(chain, config)


def direct_step(dao, method, **options):
    return create_direct_transaction(
        dao.sender, dao.finance, method, [dao.token, dao.other, 100, "rent"], options,
    )


def forward_path(dao, direct):
    script = encode([{"to": direct.to, "data": direct.data}])
    return [create_forwarder_transaction(dao.sender, dao.voting, script), direct]


class TestRecommendGasLimit:
    """Tests for recommend_gas_limit."""

    def test_padded_estimate(self):
        assert recommend_gas_limit(100_000, 10_000_000) == 150_000

    def test_capped_below_block_limit(self):
        assert recommend_gas_limit(7_000_000, 8_000_000) == 7_600_000

    def test_estimate_above_cap_returned_unchanged(self):
        assert recommend_gas_limit(9_000_000, 8_000_000) == 9_000_000

    def test_rounds_half_up(self):
        assert recommend_gas_limit(3, 1_000) == 5
        assert recommend_gas_limit(100, 10) == 100
        assert recommend_gas_limit(9, 10, gas_fuzz_factor=1.0) == 9

    def test_custom_factors(self):
        assert recommend_gas_limit(1_000, 10_000, gas_fuzz_factor=2.0, block_gas_limit_factor=0.1) == 1_000


class TestTransactionStep:
    """Tests for step construction and serialization."""

    def test_direct_transaction_options(self, dao, payment):
        step = direct_step(
            dao, payment, value="10", gas=50_000, gasPrice=3,
            token={"address": dao.token, "value": 100},
        )
        assert step.value == 10
        assert step.gas == 50_000
        assert step.gas_price == 3
        assert step.token == TokenRequirement(dao.token, 100)

    def test_snake_case_gas_price(self, dao, payment):
        assert direct_step(dao, payment, gas_price=4).gas_price == 4

    def test_to_dict(self, dao, payment):
        step = direct_step(dao, payment, gasPrice=3, token={"address": dao.token, "value": 5})
        data = step.to_dict()
        assert data["from"] == dao.sender
        assert data["to"] == dao.finance
        assert data["gasPrice"] == 3
        assert data["token"] == {"address": dao.token, "value": "5"}
        assert data["data"].startswith("0x" + payment.selector.hex())

    def test_call_params(self, dao, payment):
        params = direct_step(dao, payment, value=2).call_params()
        assert params["from"] == dao.sender
        assert params["value"] == 2

    def test_decoded_step_has_no_sender(self, dao):
        step = TransactionStep(from_address=None, to=dao.finance, data="0x")
        assert "from" not in step.to_dict()


class TestAssembleDirect:
    """Tests for assembling a one-step path."""

    def test_gas_and_price(self, assembler, dao, payment):
        [step] = assembler.assemble([direct_step(dao, payment)])
        assert step.gas == 150_000
        assert step.gas_price == MIN_GAS_PRICE
        assert step.pretransaction is None

    def test_explicit_gas_kept(self, assembler, chain, dao, payment):
        [step] = assembler.assemble([direct_step(dao, payment, gas=21_000, gasPrice=1)])
        assert step.gas == 21_000
        assert step.gas_price == 1
        assert chain.calls_to("estimate_gas") == []

    def test_configured_min_gas_price(self, chain, dao, payment):
        config = DaoPathConfig.from_dict({"transactions": {"min_gas_price_gwei": 2}})
        [step] = TransactionAssembler(chain, config).assemble([direct_step(dao, payment)])
        assert step.gas_price == 2 * GWEI

    def test_empty_path(self, assembler):
        assert assembler.assemble([]) == []


class TestTokenStaging:
    """Tests for approve() pre-transactions."""

    def test_approve_created_when_allowance_short(self, assembler, chain, dao, payment):
        chain.set_balance(dao.token, dao.sender, 1_000)
        step = direct_step(dao, payment, token={"address": dao.token, "value": 100})

        [assembled] = assembler.assemble([step])

        approve = assembled.pretransaction
        assert approve.to == dao.token
        assert approve.from_address == dao.sender
        assert approve.data == ERC20_APPROVE.encode_call([dao.finance, 100])
        assert approve.gas == 150_000
        assert approve.gas_price == MIN_GAS_PRICE
        assert assembled.token is None
        assert not assembled.allowance_reset_required
        # the main call would revert until the approval is mined
        assert assembled.gas is None
        assert len(chain.calls_to("estimate_gas")) == 1

    def test_explicit_spender(self, assembler, chain, dao, payment):
        chain.set_balance(dao.token, dao.sender, 1_000)
        step = direct_step(dao, payment, token={"address": dao.token, "value": 100, "spender": dao.vault})
        [assembled] = assembler.assemble([step])
        assert assembled.pretransaction.data == ERC20_APPROVE.encode_call([dao.vault, 100])

    def test_partial_allowance_flags_reset(self, assembler, chain, dao, payment):
        chain.set_balance(dao.token, dao.sender, 1_000)
        chain.set_allowance(dao.token, dao.sender, dao.finance, 40)
        step = direct_step(dao, payment, token={"address": dao.token, "value": 100})
        [assembled] = assembler.assemble([step])
        assert assembled.allowance_reset_required
        assert assembled.pretransaction is not None

    def test_sufficient_allowance(self, assembler, chain, dao, payment):
        chain.set_balance(dao.token, dao.sender, 1_000)
        chain.set_allowance(dao.token, dao.sender, dao.finance, 100)
        step = direct_step(dao, payment, token={"address": dao.token, "value": 100})
        [assembled] = assembler.assemble([step])
        assert assembled.pretransaction is None
        assert assembled.gas == 150_000

    def test_insufficient_balance_fails_fast(self, assembler, chain, dao, payment):
        chain.set_balance(dao.token, dao.sender, 99)
        step = direct_step(dao, payment, token={"address": dao.token, "value": 100})
        with pytest.raises(InsufficientBalance) as exc_info:
            assembler.assemble([step])
        assert exc_info.value.balance == 99
        assert exc_info.value.required == 100
        assert chain.calls_to("estimate_gas") == []


class TestForwardingFee:
    """Tests for forwarder fees and inherited token requirements."""

    def test_fee_becomes_approve_for_forwarder(self, assembler, chain, dao, payment):
        chain.set_forward_fee(dao.voting, dao.token, 5)
        chain.set_balance(dao.token, dao.sender, 10)

        path = assembler.assemble(forward_path(dao, direct_step(dao, payment)))

        approve = path[0].pretransaction
        assert approve.to == dao.token
        assert approve.data == ERC20_APPROVE.encode_call([dao.voting, 5])
        assert path[0].gas is None

    def test_fee_balance_checked(self, assembler, chain, dao, payment):
        chain.set_forward_fee(dao.voting, dao.token, 5)
        chain.set_balance(dao.token, dao.sender, 1)
        with pytest.raises(InsufficientBalance):
            assembler.assemble(forward_path(dao, direct_step(dao, payment)))

    def test_zero_fee_ignored(self, assembler, chain, dao, payment):
        chain.set_forward_fee(dao.voting, dao.token, 0)
        path = assembler.assemble(forward_path(dao, direct_step(dao, payment)))
        assert path[0].pretransaction is None
        assert path[0].gas == 150_000

    def test_inherited_token_requirement(self, assembler, chain, dao, payment):
        """Without a fee, the forwarded call's token requirement is staged by the sender."""
        chain.set_balance(dao.token, dao.sender, 1_000)
        direct = direct_step(dao, payment, token={"address": dao.token, "value": 100})

        path = assembler.assemble(forward_path(dao, direct))

        assert path[0].pretransaction.data == ERC20_APPROVE.encode_call([dao.finance, 100])
        assert (dao.token, dao.sender, dao.finance) in chain.calls_to("get_allowance")

    def test_described_steps_get_price_only(self, assembler, dao, payment):
        path = assembler.assemble(forward_path(dao, direct_step(dao, payment)))
        assert path[1].gas is None
        assert path[1].gas_price == MIN_GAS_PRICE

    def test_gas_estimate_per_target(self, dao, payment):
        chain = MockChainQuery(block_gas_limit=1_000_000)
        chain.set_gas_estimate(dao.voting, 700_000)
        path = TransactionAssembler(chain).assemble(forward_path(dao, direct_step(dao, payment)))
        assert path[0].gas == 950_000

"""
Tests for configuration loading and validation.
"""
import pytest

from config import load_config
from errors import ConfigurationMissing

REQUIRED = {
    "FORDEFI_API_TOKEN": "token",
    "SOLANA_VAULT_ID": "vault-id",
    "SOLANA_VAULT_ADDRESS": "11111111111111111111111111111111",
}

OPTIONAL = (
    "ACTION", "INVEST_AMOUNT", "SLIPPAGE_BPS", "EXISTING_ALT", "ALT_STRATEGY",
    "COMPUTE_UNIT_LIMIT", "PRIORITY_FEE", "ALT_CHUNK_SIZE",
)


@pytest.fixture
def env(monkeypatch):
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults(env):
    config = load_config()
    assert config.action == "sell"
    assert config.invest_amount == 1_000
    assert config.compute_unit_limit == 600_000
    assert config.priority_fee_micro_lamports == 10_000
    assert config.alt_chunk_size == 20
    assert config.existing_alt == ""

    intent = config.trade_intent()
    assert intent.amount == 1_000
    assert intent.slippage_bps == 100


def test_missing_credentials_listed(env):
    env.delenv("FORDEFI_API_TOKEN")
    env.setenv("SOLANA_VAULT_ID", "  ")
    with pytest.raises(ConfigurationMissing) as exc_info:
        load_config()
    assert exc_info.value.names == ["FORDEFI_API_TOKEN", "SOLANA_VAULT_ID"]


def test_invalid_action(env):
    env.setenv("ACTION", "hold")
    with pytest.raises(ValueError, match="ACTION"):
        load_config()


def test_invalid_strategy(env):
    env.setenv("ALT_STRATEGY", "borrowed")
    with pytest.raises(ValueError, match="ALT_STRATEGY"):
        load_config()


def test_non_positive_amount(env):
    env.setenv("INVEST_AMOUNT", "0")
    with pytest.raises(ValueError, match="INVEST_AMOUNT"):
        load_config()


def test_overrides(env):
    env.setenv("ACTION", "BUY")
    env.setenv("EXISTING_ALT", " SomeAlt111 ")
    env.setenv("ALT_STRATEGY", "market")
    config = load_config()
    assert config.action == "buy"
    assert config.existing_alt == "SomeAlt111"
    assert config.alt_strategy == "market"


def test_poll_policies(env):
    env.setenv("ALT_POLL_MAX_ATTEMPTS", "3")
    env.setenv("ALT_POLL_BASE_DELAY_S", "0.25")
    policy = load_config().table_poll_policy()
    assert policy.max_attempts == 3
    assert policy.delay(1) == 0.5

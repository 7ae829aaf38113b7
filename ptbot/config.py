"""Bot configuration — loaded from .env or environment variables."""

import os
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

from errors import ConfigurationMissing
from retry import RetryPolicy

# Load .env from the project root
_env_path = Path(__file__).parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

FRAGSOL_MARKET = "EJ4GPTCnNtemBVrT7QKhRfSKfM53aV2UJYGAC8gdVz5b"
MAINNET_RPC = "https://api.mainnet-beta.solana.com"
DEFAULT_ALT_STATE_FILE = str(Path(__file__).parent.parent / ".alt_state.json")

ACTIONS = ("buy", "sell")
ALT_STRATEGIES = ("self", "market")


@dataclass(frozen=True)
class TradeIntent:
    market: str
    action: str             # "buy" -> acquire PT / "sell" -> acquire the base asset
    amount: int             # smallest units of the input token
    slippage_bps: int = 100


@dataclass
class BotConfig:
    # Fordefi custody
    fordefi_api_token: str = ""
    vault_id: str = ""
    vault_address: str = ""
    private_key_path: str = "./secret/private.pem"
    fordefi_api_url: str = "https://api.fordefi.com"
    fordefi_api_path: str = "/api/v1/transactions/create-and-wait"
    fordefi_timeout_s: float = 60.0
    # Chain + market service
    rpc_url: str = MAINNET_RPC
    market_api_url: str = "http://localhost:8787"
    # Trade
    market: str = FRAGSOL_MARKET
    action: str = "sell"
    invest_amount: int = 1_000  # fragSOL has 9 decimals
    slippage_bps: int = 100     # 1%
    # Lookup table
    existing_alt: str = ""
    alt_strategy: str = ""      # "self", "market", or empty for auto
    alt_chunk_size: int = 20
    # Persist a created ALT address across restarts; empty disables
    alt_state_file: str = DEFAULT_ALT_STATE_FILE
    # Fees: these txs are account-heavy, so the CU ceiling is high
    compute_unit_limit: int = 600_000
    priority_fee_micro_lamports: int = 10_000
    # Polling
    alt_poll_max_attempts: int = 8
    alt_poll_base_delay_s: float = 0.5
    alt_poll_max_delay_s: float = 8.0
    settle_max_attempts: int = 10
    settle_base_delay_s: float = 0.5
    settle_max_delay_s: float = 4.0

    def trade_intent(self) -> TradeIntent:
        return TradeIntent(
            market=self.market,
            action=self.action,
            amount=self.invest_amount,
            slippage_bps=self.slippage_bps,
        )

    def table_poll_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.alt_poll_max_attempts,
            base_delay=self.alt_poll_base_delay_s,
            max_delay=self.alt_poll_max_delay_s,
        )

    def settle_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.settle_max_attempts,
            base_delay=self.settle_base_delay_s,
            max_delay=self.settle_max_delay_s,
        )


def load_config() -> BotConfig:
    env = os.environ

    required = ("FORDEFI_API_TOKEN", "SOLANA_VAULT_ID", "SOLANA_VAULT_ADDRESS")
    missing = [name for name in required if not env.get(name, "").strip()]
    if missing:
        raise ConfigurationMissing(missing)

    action = env.get("ACTION", "sell").strip().lower()
    if action not in ACTIONS:
        raise ValueError(f"ACTION must be one of {ACTIONS}, got {action!r}")

    alt_strategy = env.get("ALT_STRATEGY", "").strip().lower()
    if alt_strategy and alt_strategy not in ALT_STRATEGIES:
        raise ValueError(f"ALT_STRATEGY must be one of {ALT_STRATEGIES}, got {alt_strategy!r}")

    invest_amount = int(env.get("INVEST_AMOUNT", "1000"))
    if invest_amount <= 0:
        raise ValueError(f"INVEST_AMOUNT must be positive, got {invest_amount}")

    slippage_bps = int(env.get("SLIPPAGE_BPS", "100"))
    if not 0 <= slippage_bps < 10_000:
        raise ValueError(f"SLIPPAGE_BPS must be in [0, 10000), got {slippage_bps}")

    return BotConfig(
        fordefi_api_token=env["FORDEFI_API_TOKEN"].strip(),
        vault_id=env["SOLANA_VAULT_ID"].strip(),
        vault_address=env["SOLANA_VAULT_ADDRESS"].strip(),
        private_key_path=env.get("FORDEFI_PRIVATE_KEY_PATH", "./secret/private.pem"),
        fordefi_api_url=env.get("FORDEFI_API_URL", "https://api.fordefi.com"),
        fordefi_api_path=env.get(
            "FORDEFI_API_PATH", "/api/v1/transactions/create-and-wait"
        ),
        fordefi_timeout_s=float(env.get("FORDEFI_TIMEOUT_S", "60")),
        rpc_url=env.get("RPC_URL", MAINNET_RPC),
        market_api_url=env.get("MARKET_API_URL", "http://localhost:8787"),
        market=env.get("MARKET", FRAGSOL_MARKET),
        action=action,
        invest_amount=invest_amount,
        slippage_bps=slippage_bps,
        existing_alt=env.get("EXISTING_ALT", "").strip(),
        alt_strategy=alt_strategy,
        alt_chunk_size=int(env.get("ALT_CHUNK_SIZE", "20")),
        alt_state_file=env.get("ALT_STATE_FILE", DEFAULT_ALT_STATE_FILE).strip(),
        compute_unit_limit=int(env.get("COMPUTE_UNIT_LIMIT", "600000")),
        priority_fee_micro_lamports=int(env.get("PRIORITY_FEE", "10000")),
        alt_poll_max_attempts=int(env.get("ALT_POLL_MAX_ATTEMPTS", "8")),
        alt_poll_base_delay_s=float(env.get("ALT_POLL_BASE_DELAY_S", "0.5")),
        alt_poll_max_delay_s=float(env.get("ALT_POLL_MAX_DELAY_S", "8.0")),
        settle_max_attempts=int(env.get("SETTLE_MAX_ATTEMPTS", "10")),
        settle_base_delay_s=float(env.get("SETTLE_BASE_DELAY_S", "0.5")),
        settle_max_delay_s=float(env.get("SETTLE_MAX_DELAY_S", "4.0")),
    )

"""Market client — PT pricing and instruction building via the Exponent instruction service.

The Exponent market SDK only ships for TypeScript, so estimates and
instructions come from a small HTTP service wrapping it. Instructions use the
same JSON shape as Jupiter's swap-instructions endpoint:
    {"programId": ..., "accounts": [{"pubkey", "isSigner", "isWritable"}], "data": <base64>}

One client per run. It is created and closed by the caller, never cached
at module level.
"""

import base64
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from dataclasses import dataclass, field
from typing import Optional

import httpx
from loguru import logger
from solders.instruction import Instruction, AccountMeta
from solders.pubkey import Pubkey

from config import TradeIntent
from errors import EstimationUnavailable

# Placeholder sizes: the instruction shape (accounts touched) does not depend
# on the amounts, so discovery builds with these before any estimate exists.
SENTINEL_AMOUNT = 1
SENTINEL_LIMIT = 1


@dataclass
class MarketInfo:
    sy_exchange_rate: float
    pt_discount: float


@dataclass
class InstructionSet:
    setup_ixs: list[Instruction] = field(default_factory=list)
    ixs: list[Instruction] = field(default_factory=list)
    # Pre-built tables published by the market service
    lookup_table_addresses: list[Pubkey] = field(default_factory=list)

    def all_instructions(self) -> list[Instruction]:
        return [*self.setup_ixs, *self.ixs]


def _deserialize_ix(raw: dict) -> Instruction:
    """Deserialize an instruction from JSON."""
    program_id = Pubkey.from_string(raw["programId"])
    data = base64.b64decode(raw["data"])
    accounts = [
        AccountMeta(
            Pubkey.from_string(a["pubkey"]),
            is_signer=a["isSigner"],
            is_writable=a["isWritable"],
        )
        for a in raw["accounts"]
    ]
    return Instruction(program_id, data, accounts)


def _to_units(raw) -> Optional[int]:
    """Exact integer units; fractional estimates are rounded down."""
    if isinstance(raw, int):
        return raw
    try:
        return int(Decimal(str(raw)).to_integral_value(rounding=ROUND_FLOOR))
    except (InvalidOperation, ValueError, OverflowError):
        return None


def apply_slippage(estimate: int, slippage_bps: int) -> int:
    return estimate * (10_000 - slippage_bps) // 10_000


class MarketClient:
    def __init__(self, api_url: str, market: str, timeout: float = 10.0):
        self.market = market
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
        )

    async def close(self):
        await self._client.aclose()

    async def _get(self, path: str) -> dict:
        resp = await self._client.get(path)
        resp.raise_for_status()
        return resp.json()

    async def _post(self, path: str, payload: dict) -> dict:
        resp = await self._client.post(path, json=payload)
        resp.raise_for_status()
        return resp.json()

    async def get_market_info(self) -> MarketInfo:
        data = await self._get(f"/markets/{self.market}")
        return MarketInfo(
            sy_exchange_rate=float(data["syExchangeRate"]),
            pt_discount=float(data["ptDiscount"]),
        )

    async def log_market_info(self) -> MarketInfo:
        info = await self.get_market_info()
        logger.info("--- Market Info ---")
        logger.info(f"Current SY exchange rate: {info.sy_exchange_rate}")
        logger.info(f"Current PT discount: {info.pt_discount}")
        if info.sy_exchange_rate > 0:
            logger.info(f"1000 SY = {1000 * info.sy_exchange_rate} base")
            logger.info(f"1000 base = {1000 / info.sy_exchange_rate} SY")
        return info

    async def estimate_output(self, intent: TradeIntent) -> Optional[int]:
        """PT out for a buy, base asset out for a sell. None when unavailable."""
        data = await self._post(
            f"/markets/{self.market}/estimate",
            {"action": intent.action, "amount": str(intent.amount)},
        )
        raw = data.get("estimate")
        if raw is None:
            logger.warning(f"No {intent.action} estimate for {intent.amount}")
            return None
        estimate = _to_units(raw)
        if estimate is None:
            logger.warning(f"Unparseable {intent.action} estimate: {raw!r}")
            return None
        logger.info(f"Estimated {intent.action} output for {intent.amount}: {estimate}")
        return estimate if estimate > 0 else None

    async def build_instructions(
        self, action: str, owner: Pubkey, amount: int, limit: int
    ) -> InstructionSet:
        """Buy: amount=maxBaseIn, limit=ptOut. Sell: amount=ptAmount, limit=minBaseOut."""
        data = await self._post(
            f"/markets/{self.market}/instructions",
            {
                "action": action,
                "owner": str(owner),
                "amount": str(amount),
                "limit": str(limit),
            },
        )
        iset = InstructionSet(
            setup_ixs=[_deserialize_ix(ix) for ix in data.get("setupInstructions", [])],
            ixs=[_deserialize_ix(ix) for ix in data.get("instructions", [])],
            lookup_table_addresses=[
                Pubkey.from_string(a) for a in data.get("addressLookupTableAddresses", [])
            ],
        )
        logger.debug(
            f"{action} instructions: {len(iset.setup_ixs)} setup, {len(iset.ixs)} trade"
        )
        return iset

    async def build_discovery(self, intent: TradeIntent, owner: Pubkey) -> InstructionSet:
        return await self.build_instructions(
            intent.action, owner, SENTINEL_AMOUNT, SENTINEL_LIMIT
        )

    async def build_trade(self, intent: TradeIntent, owner: Pubkey) -> InstructionSet:
        if intent.action not in ("buy", "sell"):
            raise ValueError(f"Unsupported action: {intent.action}")

        estimate = await self.estimate_output(intent)
        if not estimate:
            raise EstimationUnavailable(intent.market, intent.action, intent.amount)

        limit = apply_slippage(estimate, intent.slippage_bps)
        if intent.action == "buy":
            logger.info(f"Buying PT: maxBaseIn={intent.amount} ptOut>={limit}")
        else:
            logger.info(f"Selling PT: ptAmount={intent.amount} minBaseOut>={limit}")
        return await self.build_instructions(intent.action, owner, intent.amount, limit)

#!/usr/bin/env python3
"""Exponent PT trading bot — Fordefi custody edition.

Buys or sells principal tokens (PT) on an Exponent market from a Fordefi
vault. The trade references more accounts than fit in a single transaction,
so the bot keeps its own Address Lookup Table and runs:
  1. create / reuse the lookup table
  2. extend it with every account the trade touches (20 per tx)
  3. setup transaction (token accounts), skipped when nothing is missing
  4. the trade itself

Usage:
    python ptbot/main.py [--verbose]
"""

import asyncio
import sys

import httpx
from loguru import logger
from solana.exceptions import SolanaRpcException
from solders.pubkey import Pubkey

from config import load_config, BotConfig
from errors import PipelineError
from fordefi_client import FordefiClient
from ledger_client import LedgerClient
from market_client import MarketClient
from orchestrator import RunReport, TradeOrchestrator
from signer import load_private_key

# ── Logging setup ──

logger.remove()  # Remove default handler
logger.add(
    sys.stderr,
    format="<green>{time:HH:mm:ss}</green> | <level>{level:7s}</level> | {message}",
    level="DEBUG" if "--verbose" in sys.argv else "INFO",
    colorize=True,
)


def _log_report(report: RunReport):
    for phase in report.phases:
        refs = f" refs={','.join(phase.references)}" if phase.references else ""
        logger.info(f"Step {phase.step} {phase.name}: {phase.status.value} {phase.detail}{refs}")


async def run(config: BotConfig) -> RunReport:
    logger.info("=== Exponent PT Bot ===")
    logger.info(f"Market: {config.market} | Action: {config.action} | "
                f"Amount: {config.invest_amount} | Slippage: {config.slippage_bps} bps")
    logger.info(f"Vault: {config.vault_address} | Existing ALT: {config.existing_alt or 'none'}")

    vault = Pubkey.from_string(config.vault_address)
    private_key = load_private_key(config.private_key_path)

    ledger = LedgerClient.from_url(config.rpc_url)
    market = MarketClient(config.market_api_url, config.market)
    fordefi = FordefiClient(
        api_url=config.fordefi_api_url,
        api_path=config.fordefi_api_path,
        access_token=config.fordefi_api_token,
        vault_id=config.vault_id,
        private_key=private_key,
        timeout=config.fordefi_timeout_s,
    )

    orchestrator = TradeOrchestrator(config, ledger, market, fordefi, vault)
    try:
        try:
            await market.log_market_info()
        except Exception as e:
            logger.warning(f"Could not fetch market info: {e}")
        return await orchestrator.run()
    finally:
        _log_report(orchestrator.report)
        await market.close()
        await fordefi.close()
        await ledger.close()


# ── Entry point ──

async def main() -> int:
    try:
        config = load_config()
    except (PipelineError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return 1

    try:
        report = await run(config)
    except PipelineError as e:
        logger.error(f"Run aborted: {e}")
        return 1
    except httpx.HTTPError as e:
        logger.error(f"Run aborted, market service error: {e}")
        return 1
    except SolanaRpcException as e:
        logger.error(f"Run aborted, RPC error: {e}")
        return 1
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Run aborted: {e}")
        return 1

    logger.info(f"Done: {report.summary()}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

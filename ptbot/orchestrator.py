"""Trade orchestrator — runs the lookup table, setup and trade transactions in order.

Large PT trades need an Address Lookup Table to fit in one transaction, so a
run goes through four steps, each gated on the previous one's on-chain effect:

  1. Lookup table  — create a new ALT, reuse a configured/saved one, or load
                     the tables published by the market service
  2. Extend        — register every account the trade touches, 20 at a time,
                     then wait until the confirmed table holds all of them
  3. Setup         — create missing token accounts (skipped if none missing)
  4. Trade         — re-read the table and send the sized buy/sell

Any failure aborts the run. Nothing is rolled back; the step log shows where
to resume by hand.
"""

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from loguru import logger

from address_set import chunk_addresses, diff_addresses, ordered_addresses
from alt_manager import ALTManager, LookupTableHandle, TableState, load_saved_table_address
from config import BotConfig
from errors import PipelineError, SubmissionRejected
from fordefi_client import FordefiClient, SubmissionResult
from ledger_client import LedgerClient
from market_client import InstructionSet, MarketClient
from retry import RetryExhausted, poll
from setup_detector import filter_missing
from tx_builder import TransactionComposer

STEP_TABLE = (1, "Address Lookup Table")
STEP_EXTEND = (2, "Extend Address Lookup Table")
STEP_SETUP = (3, "Setup Transaction")
STEP_TRADE = (4, "Trade Transaction")


class PhaseStatus(enum.Enum):
    COMPLETE = "complete"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class PhaseOutcome:
    step: int
    name: str
    status: PhaseStatus
    detail: str = ""
    references: list[str] = field(default_factory=list)


@dataclass
class RunReport:
    strategy: str = ""
    phases: list[PhaseOutcome] = field(default_factory=list)
    table_addresses: list[Pubkey] = field(default_factory=list)
    trade_reference: str = ""

    def status_of(self, step: int) -> Optional[PhaseStatus]:
        for phase in self.phases:
            if phase.step == step:
                return phase.status
        return None

    def summary(self) -> str:
        return " | ".join(f"{p.step}.{p.name}: {p.status.value}" for p in self.phases)


class TradeOrchestrator:
    def __init__(
        self,
        config: BotConfig,
        ledger: LedgerClient,
        market: MarketClient,
        fordefi: FordefiClient,
        vault: Pubkey,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.ledger = ledger
        self.market = market
        self.fordefi = fordefi
        self.vault = vault
        self._sleep = sleep
        self.table_policy = config.table_poll_policy()
        self.settle_policy = config.settle_policy()
        self.composer = TransactionComposer(
            ledger, vault,
            compute_unit_limit=config.compute_unit_limit,
            compute_unit_price=config.priority_fee_micro_lamports,
        )
        self.alt = ALTManager(
            ledger, vault, self._submit,
            state_file=config.alt_state_file or None,
            sleep=sleep,
        )
        self.report = RunReport()
        self._submissions: list[str] = []

    # ── Phase bookkeeping ──

    def _start(self, phase: tuple):
        step, name = phase
        self._submissions = []
        logger.info(f"--- Step {step}: {name} ---")

    def _finish(self, phase: tuple, status: PhaseStatus, detail: str = ""):
        step, name = phase
        self.report.phases.append(
            PhaseOutcome(step, name, status, detail, list(self._submissions))
        )
        label = "Complete" if status is PhaseStatus.COMPLETE else status.value.capitalize()
        suffix = f" ({detail})" if detail else ""
        logger.info(f"--- Step {step}: {label}{suffix} ---")

    # ── Submission ──

    async def _submit(
        self,
        label: str,
        instructions: list[Instruction],
        tables: list[LookupTableHandle],
    ) -> SubmissionResult:
        """Compose one transaction, hand it to the vault, wait for it to land."""
        unread = [str(t.address) for t in tables if not t.verified]
        if unread:
            raise PipelineError(f"'{label}' references unread lookup tables: {', '.join(unread)}")
        message = await self.composer.compose(instructions, [t.to_account() for t in tables])
        result = await self.fordefi.submit(message, label)
        if not result.accepted:
            raise SubmissionRejected(label, result.reference, result.error_detail or "")
        self._submissions.append(result.reference)
        await self._await_settlement(label, result)
        return result

    async def _await_settlement(self, label: str, result: SubmissionResult):
        if not result.signature:
            return
        try:
            await poll(
                lambda: self.ledger.is_confirmed(result.signature),
                self.settle_policy,
                sleep=self._sleep,
                what=f"'{label}' settlement",
            )
            logger.info(f"'{label}' confirmed: {result.signature}")
        except RetryExhausted as e:
            # Later gates re-check table contents and account existence
            logger.warning(
                f"'{label}' not confirmed after {e.attempts} polls: {result.signature}"
            )

    # ── Strategy ──

    def select_strategy(self, discovery: InstructionSet) -> str:
        if self.config.alt_strategy:
            return self.config.alt_strategy
        if discovery.lookup_table_addresses and not self.config.existing_alt:
            return "market"
        return "self"

    def _existing_table(self) -> Optional[str]:
        if self.config.existing_alt:
            return self.config.existing_alt
        if self.config.alt_state_file:
            saved = load_saved_table_address(self.config.alt_state_file)
            if saved:
                logger.info(f"Found saved ALT from a previous run: {saved}")
            return saved
        return None

    # ── Steps ──

    async def _sync_table(
        self, handle: LookupTableHandle, required: list[Pubkey]
    ) -> tuple[LookupTableHandle, int]:
        """Register what `required` still lacks, then wait for the confirmed table to show it."""
        missing = diff_addresses(required, handle.addresses)
        if not missing:
            return handle, 0

        logger.info(f"Found {len(missing)} new addresses to add to the ALT.")
        chunks = chunk_addresses(missing, self.config.alt_chunk_size)
        for i, batch in enumerate(chunks, 1):
            logger.info(f"Sending chunk {i}/{len(chunks)} to extend ALT with {len(batch)} addresses")
            await self.alt.extend(handle, batch)

        fresh = await self.alt.await_readable(
            handle.address, self.table_policy, required=handle.addresses
        )
        return fresh, len(missing)

    async def _prepare_own_table(self, discovery: InstructionSet) -> LookupTableHandle:
        self._start(STEP_TABLE)
        existing = self._existing_table()
        handle = await self.alt.create_or_reuse(existing)
        self._finish(STEP_TABLE, PhaseStatus.COMPLETE, "reused" if existing else "created")

        self._start(STEP_EXTEND)
        # Also proves a reused table exists, and that a new one has landed
        handle = await self.alt.await_readable(handle.address, self.table_policy)
        logger.info(f"ALT currently has {len(handle.addresses)} addresses.")

        required = ordered_addresses(discovery.all_instructions())
        handle, added = await self._sync_table(handle, required)
        if added == 0:
            logger.info("All required addresses are already in the ALT. Skipping extension.")
            self._finish(STEP_EXTEND, PhaseStatus.SKIPPED, "nothing to add")
        else:
            self._finish(STEP_EXTEND, PhaseStatus.COMPLETE, f"+{added} addresses")
        return handle

    async def _load_market_tables(self, discovery: InstructionSet) -> list[LookupTableHandle]:
        self._start(STEP_TABLE)
        if not discovery.lookup_table_addresses:
            raise PipelineError("Market service did not publish any lookup tables")
        tables = [
            await self.alt.await_readable(address, self.table_policy)
            for address in discovery.lookup_table_addresses
        ]
        self._finish(STEP_TABLE, PhaseStatus.COMPLETE, f"{len(tables)} market tables")

        self._start(STEP_EXTEND)
        self._finish(STEP_EXTEND, PhaseStatus.SKIPPED, "tables supplied by market")
        return tables

    async def _run_setup(self, trade: InstructionSet, tables: list[LookupTableHandle]):
        self._start(STEP_SETUP)
        setup_ixs = await filter_missing(trade.setup_ixs, self.ledger.accounts_exist)
        if not setup_ixs:
            logger.info("No setup instructions needed.")
            self._finish(STEP_SETUP, PhaseStatus.SKIPPED, "no setup instructions needed")
            return
        await self._submit("setup", setup_ixs, tables)
        self._finish(STEP_SETUP, PhaseStatus.COMPLETE, f"{len(setup_ixs)} ixs")

    async def _refresh_tables(
        self, tables: list[LookupTableHandle], trade: InstructionSet, own_table: bool
    ) -> list[LookupTableHandle]:
        """Fresh confirmed reads; the cached copies may predate the setup tx."""
        if not own_table:
            return [
                await self.alt.await_readable(t.address, self.table_policy)
                for t in tables
            ]

        handle = tables[0]
        fresh = await self.alt.await_readable(
            handle.address, self.table_policy, required=handle.addresses
        )
        fresh, added = await self._sync_table(fresh, ordered_addresses(trade.ixs))
        if added:
            logger.info(f"Sized trade needed {added} more ALT addresses")
        return [fresh]

    async def _run_trade(
        self, trade: InstructionSet, tables: list[LookupTableHandle], own_table: bool
    ):
        self._start(STEP_TRADE)
        tables = await self._refresh_tables(tables, trade, own_table)
        for t in tables:
            t.state = TableState.REFERENCED
        result = await self._submit(f"{self.config.action} PT", trade.ixs, tables)
        self.report.trade_reference = result.reference
        self._finish(STEP_TRADE, PhaseStatus.COMPLETE, result.reference)

    async def run(self) -> RunReport:
        intent = self.config.trade_intent()
        try:
            # Sentinel sizes: only the accounts touched matter here
            discovery = await self.market.build_discovery(intent, self.vault)
            strategy = self.select_strategy(discovery)
            self.report.strategy = strategy
            logger.info(f"ALT strategy: {strategy}")

            own_table = strategy == "self"
            if own_table:
                tables = [await self._prepare_own_table(discovery)]
            else:
                tables = await self._load_market_tables(discovery)
            self.report.table_addresses = [t.address for t in tables]

            trade = await self.market.build_trade(intent, self.vault)
            await self._run_setup(trade, tables)
            await self._run_trade(trade, tables, own_table)
        except Exception as e:
            self._finish(self._pending_phase(), PhaseStatus.FAILED, str(e))
            raise

        logger.info(f"{self.config.action.capitalize()} transaction sent successfully!")
        return self.report

    def _pending_phase(self) -> tuple:
        done = {p.step for p in self.report.phases}
        for phase in (STEP_TABLE, STEP_EXTEND, STEP_SETUP):
            if phase[0] not in done:
                return phase
        return STEP_TRADE

"""Address Lookup Table lifecycle — create or reuse, extend in batches, wait until readable.

The PT trade touches more accounts than fit in a 1232-byte transaction, so
every account the trade needs is registered in an ALT first. Each account
moved to an ALT saves 31 bytes (32-byte pubkey → 1-byte index).

Table states during one run:

    ABSENT → CREATED → (EXTENDING → EXTENDED)* → READABLE → REFERENCED

The reuse path starts at READABLE without proof; the first read verifies it.
Registered addresses only ever grow. Tables are never closed by the bot.

Usage:
    alt_mgr = ALTManager(ledger, vault_pubkey, submit)
    handle = await alt_mgr.create_or_reuse(existing_address)
    for batch in chunk_addresses(missing):
        await alt_mgr.extend(handle, batch)
    handle = await alt_mgr.await_readable(handle.address, policy, required=needed)
"""

import asyncio
import enum
import json
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

from solders.pubkey import Pubkey
from solders.instruction import Instruction, AccountMeta
from solders.address_lookup_table_account import AddressLookupTableAccount
from loguru import logger

from errors import LookupTableUnavailable, SubmissionRejected
from fordefi_client import SubmissionResult
from retry import RetryExhausted, RetryPolicy, poll

# Address Lookup Table Program
ALT_PROGRAM_ID = Pubkey.from_string("AddressLookupTab1e1111111111111111111111111")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

# ALT account layout: 56-byte header, then 32-byte pubkeys.
# Authority is Option<Pubkey>: tag byte at 21, key at 22..54.
_ALT_HEADER_SIZE = 56
_AUTHORITY_TAG_OFFSET = 21


class TableState(enum.Enum):
    ABSENT = "absent"
    CREATED = "created"
    EXTENDING = "extending"
    EXTENDED = "extended"
    READABLE = "readable"
    REFERENCED = "referenced"


@dataclass
class LookupTableHandle:
    address: Pubkey
    addresses: list[Pubkey] = field(default_factory=list)
    authority: Optional[Pubkey] = None
    state: TableState = TableState.READABLE
    # False until the table has been read back from the ledger at least once
    verified: bool = True

    def contains_all(self, required: Iterable[Pubkey]) -> bool:
        registered = set(self.addresses)
        return all(addr in registered for addr in required)

    def to_account(self) -> AddressLookupTableAccount:
        """Table account for MessageV0.try_compile."""
        return AddressLookupTableAccount(key=self.address, addresses=list(self.addresses))


SubmitFn = Callable[[str, list[Instruction], list[LookupTableHandle]], Awaitable[SubmissionResult]]


def _derive_lookup_table_address(authority: Pubkey, recent_slot: int) -> tuple:
    """Derive the ALT PDA address from authority + slot."""
    pda, bump = Pubkey.find_program_address(
        [bytes(authority), struct.pack("<Q", recent_slot)],
        ALT_PROGRAM_ID,
    )
    return pda, bump


def build_create_lookup_table_ix(
    authority: Pubkey, payer: Pubkey, recent_slot: int
) -> tuple:
    """Build CreateLookupTable instruction. Returns (instruction, table_address)."""
    table_address, bump = _derive_lookup_table_address(authority, recent_slot)

    # discriminator=0 (CreateLookupTable), recent_slot (u64), bump (u8)
    data = struct.pack("<IQB", 0, recent_slot, bump)

    accounts = [
        AccountMeta(table_address, is_signer=False, is_writable=True),
        AccountMeta(authority, is_signer=True, is_writable=False),
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]

    return Instruction(ALT_PROGRAM_ID, data, accounts), table_address


def build_extend_lookup_table_ix(
    table_address: Pubkey, authority: Pubkey, payer: Pubkey,
    new_addresses: list,
) -> Instruction:
    """Build ExtendLookupTable instruction."""
    # discriminator=2 (ExtendLookupTable), count (u64), then pubkeys
    data = struct.pack("<IQ", 2, len(new_addresses))
    for addr in new_addresses:
        data += bytes(addr)

    accounts = [
        AccountMeta(table_address, is_signer=False, is_writable=True),
        AccountMeta(authority, is_signer=True, is_writable=False),
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]

    return Instruction(ALT_PROGRAM_ID, data, accounts)


def parse_alt_account(key: Pubkey, data: bytes) -> Optional[LookupTableHandle]:
    """Parse ALT account data into a LookupTableHandle."""
    if len(data) < _ALT_HEADER_SIZE:
        return None
    authority = None
    if data[_AUTHORITY_TAG_OFFSET] == 1:
        authority = Pubkey.from_bytes(data[_AUTHORITY_TAG_OFFSET + 1:_AUTHORITY_TAG_OFFSET + 33])
    addr_data = data[_ALT_HEADER_SIZE:]
    num_addrs = len(addr_data) // 32
    addrs = [Pubkey.from_bytes(addr_data[i * 32:(i + 1) * 32]) for i in range(num_addrs)]
    return LookupTableHandle(address=key, addresses=addrs, authority=authority)


def load_saved_table_address(state_file: str) -> Optional[str]:
    """ALT address saved by a previous run, if any."""
    path = Path(state_file)
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text())["address"]
    except (ValueError, KeyError) as e:
        logger.warning(f"Ignoring unreadable ALT state file {path}: {e}")
        return None


class ALTManager:
    """Creates, extends and reads back the bot's Address Lookup Table.

    Only one run may drive a given table at a time: the table authority is
    the single writer and nothing here guards against a second run.
    """

    def __init__(
        self,
        ledger,
        authority: Pubkey,
        submit: SubmitFn,
        state_file: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ledger = ledger
        self.authority = authority
        self._submit = submit
        self.state_file = state_file
        self._sleep = sleep

    async def create_or_reuse(self, existing_address: Optional[str] = None) -> LookupTableHandle:
        if existing_address:
            address = (
                existing_address if isinstance(existing_address, Pubkey)
                else Pubkey.from_string(existing_address)
            )
            logger.info(f"Reusing existing Address Lookup Table: {address}")
            # Not verified here: the first read-back proves it exists
            return LookupTableHandle(
                address=address, authority=self.authority,
                state=TableState.READABLE, verified=False,
            )

        recent_slot = await self.ledger.get_slot()
        ix, table_addr = build_create_lookup_table_ix(
            self.authority, self.authority, recent_slot
        )
        logger.info(f"The new ALT address will be: {table_addr}")
        logger.debug(f"ALT explorer link: https://solscan.io/account/{table_addr}")

        label = "create lookup table"
        result = await self._submit(label, [ix], [])
        if not result.accepted:
            raise SubmissionRejected(label, result.reference, result.error_detail or "")

        # Save for reuse across restarts
        if self.state_file:
            Path(self.state_file).write_text(json.dumps({"address": str(table_addr)}))

        logger.info(f"ALT create accepted: {table_addr}")
        return LookupTableHandle(
            address=table_addr, authority=self.authority,
            state=TableState.CREATED, verified=False,
        )

    async def extend(self, handle: LookupTableHandle, batch: list[Pubkey]) -> None:
        """Register one batch. The handle grows only once the submission is accepted;
        a rejected extend raises and leaves the handle untouched.
        """
        if not batch:
            return
        if len(set(batch)) != len(batch):
            raise ValueError("Extend batch contains duplicate addresses")
        already = set(handle.addresses).intersection(batch)
        if already:
            raise ValueError(f"{len(already)} addresses in batch are already registered")

        ix = build_extend_lookup_table_ix(
            handle.address, self.authority, self.authority, batch,
        )
        label = f"extend lookup table (+{len(batch)})"
        previous = handle.state
        handle.state = TableState.EXTENDING
        result = await self._submit(label, [ix], [])
        if not result.accepted:
            handle.state = previous
            raise SubmissionRejected(label, result.reference, result.error_detail or "")
        handle.addresses.extend(batch)
        handle.state = TableState.EXTENDED
        logger.debug(f"ALT extended: +{len(batch)} addresses ({len(handle.addresses)} known)")

    async def await_readable(
        self,
        address: Pubkey,
        policy: RetryPolicy,
        required: Optional[Iterable[Pubkey]] = None,
    ) -> LookupTableHandle:
        """Poll the ledger until the table is visible (and holds `required`).

        Creation and readability are not atomic: the create tx has to land
        before the table can be read, and extends land the same way.
        """
        needed = list(required) if required is not None else []

        async def fetch() -> Optional[LookupTableHandle]:
            table = await self.ledger.get_lookup_table(address)
            if table is None:
                return None
            if needed and not table.contains_all(needed):
                logger.debug(
                    f"ALT {address} visible but missing "
                    f"{len(set(needed) - set(table.addresses))} addresses"
                )
                return None
            return table

        try:
            table = await poll(fetch, policy, sleep=self._sleep, what=f"ALT {address}")
        except RetryExhausted as e:
            raise LookupTableUnavailable(str(address), e.attempts) from e

        table.state = TableState.READABLE
        table.verified = True
        logger.info(f"ALT readable: {address} ({len(table.addresses)} addresses)")
        return table

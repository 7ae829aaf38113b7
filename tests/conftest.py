"""
Pytest configuration and fixtures for the PT bot tests.
"""
import base64
import struct

import pytest
from unittest.mock import AsyncMock
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import from_bytes_versioned
from solders.pubkey import Pubkey

from alt_manager import ALT_PROGRAM_ID, LookupTableHandle
from config import BotConfig
from fordefi_client import SubmissionResult


def make_ix(program_id, keys, data=b"\x01"):
    """Instruction touching `keys`; the first key is the signer."""
    accounts = [
        AccountMeta(key, is_signer=(i == 0), is_writable=True)
        for i, key in enumerate(keys)
    ]
    return Instruction(program_id, data, accounts)


class FakeChain:
    """In-memory ledger: applies create/extend instructions from submitted messages."""

    def __init__(self):
        self.tables: dict[Pubkey, list[Pubkey]] = {}
        self.accounts: set[Pubkey] = set()
        self.events: list[str] = []

    def apply(self, serialized: str):
        msg = from_bytes_versioned(base64.b64decode(serialized))
        keys = msg.account_keys
        for cix in msg.instructions:
            if keys[cix.program_id_index] != ALT_PROGRAM_ID:
                continue
            data = bytes(cix.data)
            table = keys[cix.accounts[0]]
            kind = struct.unpack_from("<I", data)[0]
            if kind == 0:
                self.tables[table] = []
            elif kind == 2:
                count = struct.unpack_from("<Q", data, 4)[0]
                self.tables[table].extend(
                    Pubkey.from_bytes(data[12 + 32 * i:44 + 32 * i]) for i in range(count)
                )


class FakeLedger:
    def __init__(self, chain: FakeChain):
        self.chain = chain
        self.table_reads = 0
        self.existence_queries: list[list[Pubkey]] = []

    async def get_latest_blockhash(self):
        return Hash.default()

    async def get_slot(self):
        return 250_000_000

    async def accounts_exist(self, addresses):
        self.existence_queries.append(list(addresses))
        return [addr in self.chain.accounts for addr in addresses]

    async def get_lookup_table(self, address):
        self.table_reads += 1
        self.chain.events.append("read_table")
        if address not in self.chain.tables:
            return None
        return LookupTableHandle(address=address, addresses=list(self.chain.tables[address]))

    async def is_confirmed(self, signature):
        return True


class FakeFordefi:
    def __init__(self, chain: FakeChain, reject_labels=()):
        self.chain = chain
        self.reject_labels = set(reject_labels)
        self.submissions: list[tuple[str, str]] = []

    async def submit(self, serialized_message, label=""):
        if label in self.reject_labels:
            return SubmissionResult(accepted=False, reference="rej", error_detail="state=aborted")
        self.submissions.append((label, serialized_message))
        self.chain.events.append(f"submit:{label}")
        self.chain.apply(serialized_message)
        return SubmissionResult(accepted=True, reference=f"fd-{len(self.submissions)}")

    @property
    def labels(self):
        return [label for label, _ in self.submissions]


@pytest.fixture
def vault():
    """Fordefi vault address (payer and ALT authority)."""
    return Pubkey.new_unique()


@pytest.fixture
def bot_config(vault):
    """Config with fast polling and no state file."""
    return BotConfig(
        fordefi_api_token="token",
        vault_id="vault-id",
        vault_address=str(vault),
        action="sell",
        invest_amount=1_000,
        alt_state_file="",
        alt_poll_max_attempts=4,
        alt_poll_base_delay_s=0.01,
        alt_poll_max_delay_s=0.05,
        settle_max_attempts=2,
        settle_base_delay_s=0.01,
        settle_max_delay_s=0.01,
    )


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def fake_ledger(chain):
    return FakeLedger(chain)


@pytest.fixture
def fake_fordefi(chain):
    return FakeFordefi(chain)


@pytest.fixture
def no_sleep():
    """Sleep stub so backoff loops finish instantly."""
    return AsyncMock()

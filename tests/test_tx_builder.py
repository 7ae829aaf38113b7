"""
Tests for tx_builder.py
"""
import base64

import pytest
from unittest.mock import AsyncMock
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.compute_budget import ID as COMPUTE_BUDGET_ID
from solders.hash import Hash
from solders.message import from_bytes_versioned
from solders.pubkey import Pubkey

from conftest import make_ix
from errors import TransactionTooLarge
from tx_builder import MAX_TX_BYTES, TransactionComposer, compile_message, serialize_message, transaction_size


class TestCompileMessage:
    """Tests for V0 message compilation."""

    def test_compute_budget_first(self, vault):
        program = Pubkey.new_unique()
        msg = compile_message(vault, [make_ix(program, [vault])], Hash.default())

        keys = msg.account_keys
        programs = [keys[ix.program_id_index] for ix in msg.instructions]
        assert programs == [COMPUTE_BUDGET_ID, COMPUTE_BUDGET_ID, program]
        assert keys[0] == vault

    def test_serialize_round_trip(self, vault):
        msg = compile_message(vault, [make_ix(Pubkey.new_unique(), [vault])], Hash.default())
        decoded = from_bytes_versioned(base64.b64decode(serialize_message(msg)))
        assert decoded == msg

    def test_too_large_without_table(self, vault):
        keys = [vault] + [Pubkey.new_unique() for _ in range(40)]
        msg = compile_message(vault, [make_ix(Pubkey.new_unique(), keys)], Hash.default())

        assert transaction_size(msg) > MAX_TX_BYTES
        with pytest.raises(TransactionTooLarge):
            serialize_message(msg)

    def test_lookup_table_shrinks_message(self, vault):
        extra = [Pubkey.new_unique() for _ in range(40)]
        ix = make_ix(Pubkey.new_unique(), [vault] + extra)
        table = AddressLookupTableAccount(key=Pubkey.new_unique(), addresses=extra)

        msg = compile_message(vault, [ix], Hash.default(), [table])

        assert transaction_size(msg) <= MAX_TX_BYTES
        assert len(msg.address_table_lookups) == 1


class TestTransactionComposer:
    """Tests for TransactionComposer."""

    @pytest.mark.asyncio
    async def test_compose_uses_fresh_blockhash(self, vault):
        ledger = AsyncMock()
        ledger.get_latest_blockhash.return_value = Hash.new_unique()
        composer = TransactionComposer(ledger, vault, compute_unit_limit=600_000, compute_unit_price=10_000)

        serialized = await composer.compose([make_ix(Pubkey.new_unique(), [vault])])

        decoded = from_bytes_versioned(base64.b64decode(serialized))
        assert decoded.recent_blockhash == ledger.get_latest_blockhash.return_value
        ledger.get_latest_blockhash.assert_awaited_once()

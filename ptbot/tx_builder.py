"""Transaction builder — compiles V0 messages for the custody signer.

Every message is:
  [compute unit limit] -> [compute unit price] -> [instructions...]
compiled against the given lookup tables and serialized as a versioned
message (base64). The vault signs it, so no signatures are attached here.
"""

import base64
from typing import Optional

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from loguru import logger

from errors import TransactionTooLarge

MAX_TX_BYTES = 1232
_SIGNATURE_BYTES = 64


def compile_message(
    payer: Pubkey,
    instructions: list[Instruction],
    recent_blockhash: Hash,
    lookup_tables: Optional[list[AddressLookupTableAccount]] = None,
    compute_unit_limit: int = 600_000,
    compute_unit_price: int = 10_000,
) -> MessageV0:
    # Compute budget (must be first)
    return MessageV0.try_compile(
        payer=payer,
        instructions=[
            set_compute_unit_limit(compute_unit_limit),
            set_compute_unit_price(compute_unit_price),
            *instructions,
        ],
        address_lookup_table_accounts=lookup_tables or [],
        recent_blockhash=recent_blockhash,
    )


def transaction_size(msg: MessageV0) -> int:
    """Wire size once signed: compact-u16 count + signatures + message."""
    num_sigs = msg.header.num_required_signatures
    sig_len_prefix = 1 if num_sigs < 0x80 else 2
    return sig_len_prefix + num_sigs * _SIGNATURE_BYTES + len(to_bytes_versioned(msg))


def serialize_message(msg: MessageV0) -> str:
    tx_bytes = transaction_size(msg)
    logger.debug(f"Tx built: {tx_bytes} bytes ({tx_bytes/MAX_TX_BYTES*100:.1f}% of max)")
    if tx_bytes > MAX_TX_BYTES:
        raise TransactionTooLarge(tx_bytes, MAX_TX_BYTES)
    return base64.b64encode(to_bytes_versioned(msg)).decode()


class TransactionComposer:
    """Builds signer-ready messages with a fresh blockhash for each one."""

    def __init__(
        self,
        ledger,
        payer: Pubkey,
        compute_unit_limit: int = 600_000,
        compute_unit_price: int = 10_000,
    ):
        self.ledger = ledger
        self.payer = payer
        self.compute_unit_limit = compute_unit_limit
        self.compute_unit_price = compute_unit_price

    async def compose(
        self,
        instructions: list[Instruction],
        lookup_tables: Optional[list[AddressLookupTableAccount]] = None,
    ) -> str:
        blockhash = await self.ledger.get_latest_blockhash()
        msg = compile_message(
            self.payer,
            instructions,
            blockhash,
            lookup_tables,
            self.compute_unit_limit,
            self.compute_unit_price,
        )
        logger.debug(
            f"Message compiled: {len(instructions)} ixs, "
            f"{len(lookup_tables or [])} lookup tables"
        )
        return serialize_message(msg)

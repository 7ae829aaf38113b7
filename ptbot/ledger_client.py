"""Ledger reads — blockhash, slots, account existence, lookup tables, signature status.

Everything is read at confirmed commitment. The default (finalized) lags
behind and returns stale lookup table contents right after an extend.
"""

from typing import Optional

from solders.account import Account
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from loguru import logger

from alt_manager import ALT_PROGRAM_ID, LookupTableHandle, parse_alt_account
from errors import SubmissionRejected

# getMultipleAccounts accepts at most 100 keys per call
_MAX_MULTIPLE_ACCOUNTS = 100

_LANDED = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)


class LedgerClient:
    def __init__(self, rpc: AsyncClient):
        self.rpc = rpc

    @classmethod
    def from_url(cls, rpc_url: str) -> "LedgerClient":
        return cls(AsyncClient(rpc_url, commitment=Confirmed))

    async def close(self):
        await self.rpc.close()

    async def get_latest_blockhash(self) -> Hash:
        resp = await self.rpc.get_latest_blockhash(Confirmed)
        return resp.value.blockhash

    async def get_slot(self) -> int:
        # Confirmed slot (finalized can be too old for the blockhash)
        resp = await self.rpc.get_slot(Confirmed)
        return resp.value

    async def get_multiple_account_states(self, addresses: list[Pubkey]) -> list[Optional[Account]]:
        states: list[Optional[Account]] = []
        for i in range(0, len(addresses), _MAX_MULTIPLE_ACCOUNTS):
            batch = addresses[i:i + _MAX_MULTIPLE_ACCOUNTS]
            resp = await self.rpc.get_multiple_accounts(batch, commitment=Confirmed)
            states.extend(resp.value)
        return states

    async def accounts_exist(self, addresses: list[Pubkey]) -> list[Optional[bool]]:
        """Existence per address: True, False, or None when the node did not say."""
        if not addresses:
            return []
        states = await self.get_multiple_account_states(addresses)
        if len(states) != len(addresses):
            logger.warning(
                f"getMultipleAccounts returned {len(states)} entries for "
                f"{len(addresses)} addresses"
            )
        return [
            (states[i] is not None) if i < len(states) else None
            for i in range(len(addresses))
        ]

    async def get_lookup_table(self, address: Pubkey) -> Optional[LookupTableHandle]:
        resp = await self.rpc.get_account_info(address, Confirmed)
        if resp.value is None:
            return None
        if resp.value.owner != ALT_PROGRAM_ID:
            logger.warning(f"Account {address} is not owned by the ALT program")
            return None
        return parse_alt_account(address, bytes(resp.value.data))

    async def is_confirmed(self, signature: str) -> Optional[bool]:
        """True once confirmed, None while the signature is unseen or still processing."""
        resp = await self.rpc.get_signature_statuses([Signature.from_string(signature)])
        statuses = resp.value
        if not statuses or statuses[0] is None:
            return None
        status = statuses[0]
        if status.err:
            raise SubmissionRejected("settlement", signature, f"tx failed on-chain: {status.err}")
        if status.confirmation_status in _LANDED:
            return True
        return None

"""Setup filtering — drops account-creation instructions whose account already exists."""

from typing import Awaitable, Callable, Optional

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from loguru import logger

# Associated-token-account creation: [payer, new_account, owner, mint, ...]
TARGET_KEY_INDEX = 1

ExistenceCheck = Callable[[list[Pubkey]], Awaitable[list[Optional[bool]]]]


def setup_target(ix: Instruction) -> Optional[Pubkey]:
    if len(ix.accounts) <= TARGET_KEY_INDEX:
        return None
    return ix.accounts[TARGET_KEY_INDEX].pubkey


async def filter_missing(
    setup_ixs: list[Instruction], exists: ExistenceCheck
) -> list[Instruction]:
    """Keep the setup instructions whose target account still has to be created.

    One batched existence query covers every target. An instruction without
    a target key, or whose target the node could not report on, is kept.
    """
    if not setup_ixs:
        return []

    targets = [setup_target(ix) for ix in setup_ixs]
    lookup = [t for t in targets if t is not None]
    results = await exists(lookup) if lookup else []
    existing = {
        addr for addr, found in zip(lookup, results) if found is True
    }

    kept = [ix for ix, target in zip(setup_ixs, targets) if target not in existing]
    logger.debug(
        f"Setup: {len(setup_ixs)} candidate ixs, {len(setup_ixs) - len(kept)} already satisfied"
    )
    return kept

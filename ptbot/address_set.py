"""Account-set helpers for lookup table maintenance.

resolve_addresses  — every program id and account key a set of instructions touches
                     (ordered_addresses keeps first-seen order for stable batching)
diff_addresses     — what still has to be registered in a table
chunk_addresses    — split registration work into extend-sized batches
"""

from typing import Iterable

from solders.instruction import Instruction
from solders.pubkey import Pubkey

# Max 20 addresses per extend tx (conservative, limit is ~30)
MAX_EXTEND_BATCH = 20


def ordered_addresses(instructions: Iterable[Instruction]) -> list[Pubkey]:
    """Program ids and account keys in first-seen order, without repeats.

    An instruction with no accounts still contributes its program id.
    """
    seen: set[Pubkey] = set()
    ordered = []
    for ix in instructions:
        for addr in [ix.program_id, *(meta.pubkey for meta in ix.accounts)]:
            if addr not in seen:
                seen.add(addr)
                ordered.append(addr)
    return ordered


def resolve_addresses(instructions: Iterable[Instruction]) -> set[Pubkey]:
    """Union of program ids and account keys across all instructions."""
    return set(ordered_addresses(instructions))


def diff_addresses(required: Iterable[Pubkey], existing: Iterable[Pubkey]) -> list[Pubkey]:
    """Addresses in `required` but not in `existing`, first-seen order, no repeats.

    Pubkey equality is byte equality; no normalization is applied.
    """
    seen = set(existing)
    missing = []
    for addr in required:
        if addr in seen:
            continue
        seen.add(addr)
        missing.append(addr)
    return missing


def chunk_addresses(addresses: list[Pubkey], max_chunk_size: int = MAX_EXTEND_BATCH) -> list[list[Pubkey]]:
    if max_chunk_size < 1:
        raise ValueError(f"max_chunk_size must be >= 1, got {max_chunk_size}")
    return [
        addresses[i:i + max_chunk_size]
        for i in range(0, len(addresses), max_chunk_size)
    ]

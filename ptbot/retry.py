"""Bounded exponential-backoff polling.

One policy object drives both lookup-table readability polling and
post-submission settlement polling:

    policy = RetryPolicy(max_attempts=8, base_delay=0.5, max_delay=8.0)
    table = await poll(lambda: ledger.get_lookup_table(addr), policy)

The delay after the n-th failed attempt (n starting at 1) is
min(2**n * base_delay, max_delay). No sleep follows the final attempt.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from loguru import logger
from solana.exceptions import SolanaRpcException

T = TypeVar("T")


def _transient_rpc_error(error: BaseException) -> bool:
    return isinstance(error, (httpx.TransportError, SolanaRpcException))


class RetryExhausted(Exception):
    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 8
    base_delay: float = 0.5
    max_delay: float = 8.0
    is_retryable: Callable[[BaseException], bool] = field(
        default=_transient_rpc_error, compare=False
    )

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def delay(self, attempt: int) -> float:
        return min((2 ** attempt) * self.base_delay, self.max_delay)


async def poll(
    fetch: Callable[[], Awaitable[Optional[T]]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    what: str = "resource",
) -> T:
    """Call `fetch` until it returns something other than None.

    Raises RetryExhausted after `policy.max_attempts` unsuccessful calls.
    Exceptions rejected by `policy.is_retryable` propagate immediately.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await fetch()
            if result is not None:
                if attempt > 1:
                    logger.debug(f"{what} available after {attempt} attempts")
                return result
        except Exception as e:
            if not policy.is_retryable(e):
                raise
            last_error = e
            logger.debug(f"{what} poll error (attempt {attempt}): {e}")

        if attempt < policy.max_attempts:
            delay = policy.delay(attempt)
            logger.debug(f"{what} not ready, retrying in {delay:.2f}s "
                         f"({attempt}/{policy.max_attempts})")
            await sleep(delay)

    raise RetryExhausted(policy.max_attempts, last_error)

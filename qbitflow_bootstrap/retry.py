from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from solana.exceptions import SolanaRpcException
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

_T = TypeVar("_T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for RPC reads and confirmations.

    Only transport failures are retried. Transactions are never resubmitted
    through this policy: a duplicate mint or mint_to is not harmless.
    """

    max_attempts: int = 3
    initial_wait: float = 0.5
    max_wait: float = 5.0

    async def run(self, fn: Callable[[], Awaitable[_T]]) -> _T:
        async for attempt in self._retrying():
            with attempt:
                return await fn()
        raise RuntimeError("retry loop exited without a result")

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(SolanaRpcException),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(initial=self.initial_wait, max=self.max_wait),
            reraise=True,
        )


NO_RETRY = RetryPolicy(max_attempts=1)

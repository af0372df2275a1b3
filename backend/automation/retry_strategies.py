"""Retry policies for action dispatch.

Only transient action errors (timeouts, connection failures, 5xx/429
responses) are retried; configuration and permanent action errors fail
the Run on the first attempt.

Usage:
    strategy = RetryStrategy.exponential(max_attempts=3, base_delay=1.0)
    result = await execute_with_retry(dispatcher.dispatch, strategy, kind, config, ctx)

An action node may override the engine default with a ``retry`` block::

    {"action_type": "call_webhook", "retry": {"policy": "fixed", "max_attempts": 5, "base_delay": 2}}
"""

import asyncio
import math
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from core.exceptions import ConfigurationError, TransientActionError


class RetryPolicy(str, Enum):
    """Available retry policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    NONE = "none"


@dataclass
class RetryStrategy:
    """How many times, and how far apart, a transient failure is retried.

    ``max_attempts`` counts every call including the first one.
    """
    policy: RetryPolicy
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = False

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """Single attempt, no retries."""
        return cls(policy=RetryPolicy.NONE, max_attempts=1)

    @classmethod
    def fixed(cls, max_attempts: int = 3, delay: float = 1.0) -> 'RetryStrategy':
        return cls(policy=RetryPolicy.FIXED, max_attempts=max_attempts, base_delay=delay)

    @classmethod
    def exponential(
        cls,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: bool = False,
    ) -> 'RetryStrategy':
        """Exponential backoff: base, 2*base, 4*base... capped at max_delay."""
        return cls(
            policy=RetryPolicy.EXPONENTIAL,
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            jitter=jitter,
        )

    @classmethod
    def from_dict(cls, config: dict, default: Optional['RetryStrategy'] = None) -> 'RetryStrategy':
        """Build from an action node's ``retry`` block, filling gaps from ``default``.

        Raises ConfigurationError for an unknown policy or non-numeric limits.
        """
        base = default or cls.exponential()
        try:
            strategy = cls(
                policy=RetryPolicy(config.get('policy', base.policy.value)),
                max_attempts=int(config.get('max_attempts', base.max_attempts)),
                base_delay=float(config.get('base_delay', base.base_delay)),
                max_delay=float(config.get('max_delay', base.max_delay)),
                jitter=bool(config.get('jitter', base.jitter)),
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise ConfigurationError(f"Invalid retry settings: {e}")
        if strategy.max_attempts < 1:
            raise ConfigurationError("retry.max_attempts must be at least 1")
        for name in ('base_delay', 'max_delay'):
            value = getattr(strategy, name)
            if not math.isfinite(value) or value < 0:
                raise ConfigurationError(f"retry.{name} must be a non-negative number, got {value!r}")
        return strategy

    def compute_delay(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return 0.0

        if self.policy == RetryPolicy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (attempt - 1))
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            delay = delay + random.uniform(-delay / 2, delay / 2)
            delay = max(0.0, delay)

        return round(delay, 3)

    def should_retry(self, attempt: int, error: Exception) -> bool:
        """Whether to try again after ``attempt`` calls failed with ``error``."""
        if self.policy == RetryPolicy.NONE or attempt >= self.max_attempts:
            return False
        return isinstance(error, TransientActionError)


async def execute_with_retry(
    func: Callable[..., Awaitable],
    strategy: RetryStrategy,
    *args,
    on_retry: Optional[Callable] = None,
    sleep: Callable[[float], Awaitable] = asyncio.sleep,
    **kwargs,
):
    """Await ``func(*args, **kwargs)``, retrying transient failures.

    Args:
        func: Async callable to execute.
        strategy: RetryStrategy instance.
        on_retry: Optional callback(attempt, error, delay) called before each retry.
        sleep: Awaitable sleep, replaceable in tests.

    Raises:
        The last exception once the strategy gives up.
    """
    attempt = 0
    while True:
        try:
            return await func(*args, **kwargs)
        except TransientActionError as e:
            attempt += 1
            if not strategy.should_retry(attempt, e):
                raise

            delay = strategy.compute_delay(attempt)
            if on_retry:
                on_retry(attempt, e, delay)
            await sleep(delay)

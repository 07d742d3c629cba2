"""Retry strategies for calls against the engine.

Every client operation accepts any number of strategies. Each one gets a fresh
:class:`RetryInstance` per call; after a failed attempt every instance may end
the call (returning the error to raise) and may propose a delay before the next
attempt. The shortest proposed delay wins.

Example:
    >>> await client.wait_for_vm_status(vm_id, VMStatus.UP, AutoRetry(), MaxTries(30), FixedDelay(2))
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from .exceptions import NEVER_RETRY_CODES, OvirtError, OvirtTimeoutError

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Default predicate: only transient error kinds are retried."""
    return isinstance(error, OvirtError) and error.can_auto_retry


class RetryInstance:
    """Per-call state of a strategy. Subclasses override the hooks they need."""

    def check(self, error: OvirtError, action: str) -> Optional[BaseException]:
        """Return an error to end the call with, or None to allow another attempt."""
        return None

    def wait(self, error: OvirtError) -> Optional[float]:
        """Seconds to sleep before the next attempt, or None for no opinion."""
        return None


class RetryStrategy:
    """Reusable retry policy; ``get()`` creates the state for a single call."""

    def get(self) -> RetryInstance:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class AutoRetry(RetryStrategy):
    """Stop on errors the predicate does not consider transient."""

    def __init__(self, retryable: Callable[[BaseException], bool] = is_retryable):
        self.retryable = retryable

    def get(self) -> RetryInstance:
        return _AutoRetryInstance(self.retryable)


class _AutoRetryInstance(RetryInstance):
    def __init__(self, retryable: Callable[[BaseException], bool]):
        self.retryable = retryable

    def check(self, error: OvirtError, action: str) -> Optional[BaseException]:
        if not self.retryable(error):
            return error
        return None


class MaxTries(RetryStrategy):
    """Limit the number of attempts, including the first one."""

    def __init__(self, tries: int):
        if tries < 1:
            raise ValueError(f"tries must be at least 1, got {tries}")
        self.tries = tries

    def get(self) -> RetryInstance:
        return _MaxTriesInstance(self.tries)

    def __repr__(self) -> str:
        return f"MaxTries({self.tries})"


class _MaxTriesInstance(RetryInstance):
    def __init__(self, tries: int):
        self.tries = tries
        self.attempts = 0

    def check(self, error: OvirtError, action: str) -> Optional[BaseException]:
        self.attempts += 1
        if self.attempts >= self.tries:
            return OvirtTimeoutError(
                f"giving up {action} after {self.attempts} attempts",
                cause=error,
                attempts=self.attempts,
            )
        return None


class FixedDelay(RetryStrategy):
    """Wait the same amount of time between attempts."""

    def __init__(self, seconds: float):
        if seconds < 0:
            raise ValueError(f"delay must not be negative, got {seconds}")
        self.seconds = seconds

    def get(self) -> RetryInstance:
        return _FixedDelayInstance(self.seconds)

    def __repr__(self) -> str:
        return f"FixedDelay({self.seconds})"


class _FixedDelayInstance(RetryInstance):
    def __init__(self, seconds: float):
        self.seconds = seconds

    def wait(self, error: OvirtError) -> Optional[float]:
        return self.seconds


class ExponentialBackoff(RetryStrategy):
    """Multiply the delay by ``factor`` after every failed attempt, up to ``maximum``."""

    def __init__(self, factor: float = 2.0, initial: float = 1.0, maximum: Optional[float] = None):
        if factor < 1:
            raise ValueError(f"factor must be at least 1, got {factor}")
        if initial < 0:
            raise ValueError(f"initial delay must not be negative, got {initial}")
        self.factor = factor
        self.initial = initial
        self.maximum = maximum

    def get(self) -> RetryInstance:
        return _ExponentialBackoffInstance(self.factor, self.initial, self.maximum)

    def __repr__(self) -> str:
        return f"ExponentialBackoff(factor={self.factor}, initial={self.initial}, maximum={self.maximum})"


class _ExponentialBackoffInstance(RetryInstance):
    def __init__(self, factor: float, initial: float, maximum: Optional[float]):
        self.factor = factor
        self.maximum = maximum
        self.next_delay = initial

    def wait(self, error: OvirtError) -> Optional[float]:
        delay = self.next_delay
        if self.maximum is not None:
            delay = min(delay, self.maximum)
        self.next_delay = delay * self.factor
        return delay


class CancelOnEvent(RetryStrategy):
    """Stop retrying once ``event`` is set.

    The event is checked between attempts, so an in-flight request still completes.
    """

    def __init__(self, event: asyncio.Event):
        self.event = event

    def get(self) -> RetryInstance:
        return _CancelOnEventInstance(self.event)


class _CancelOnEventInstance(RetryInstance):
    def __init__(self, event: asyncio.Event):
        self.event = event

    def check(self, error: OvirtError, action: str) -> Optional[BaseException]:
        if self.event.is_set():
            return OvirtTimeoutError(f"{action} cancelled", cause=error)
        return None


async def retry(
    action: str,
    logger: logging.Logger,
    strategies: Sequence[RetryStrategy],
    what: Callable[[], Awaitable[T]],
) -> T:
    """Run ``what`` until it succeeds or one of the strategies gives up.

    Errors that indicate a defect (bad argument, missing field, bug) end the
    call on the first attempt regardless of the strategies. Exceptions that are
    not OvirtErrors propagate unchanged.
    """
    instances: List[RetryInstance] = [strategy.get() for strategy in strategies]
    logger.debug(f"{action}...")
    while True:
        try:
            result = await what()
        except OvirtError as e:
            if e.code in NEVER_RETRY_CODES:
                logger.debug(f"Failed {action}; not retrying {e.code.value} error. ({e})")
                raise
            for instance in instances:
                stop = instance.check(e, action)
                if stop is None:
                    continue
                logger.error(f"Failed {action}; giving up. ({stop})")
                if stop is e:
                    raise
                raise stop from e
            delays = [d for d in (instance.wait(e) for instance in instances) if d is not None]
            delay = min(delays) if delays else 0.0
            logger.debug(f"Failed {action}, retrying in {delay:.2f}s... ({e})")
            await asyncio.sleep(delay)
        else:
            logger.debug(f"Completed {action}.")
            return result

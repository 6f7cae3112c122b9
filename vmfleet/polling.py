"""Cancellable polling with an attempt budget, backoff and a deadline."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class PollOutcome(Generic[T]):
    value: Optional[T]
    attempts: int
    cancelled: bool = False
    timed_out: bool = False


def poll(
    check: Callable[[], Optional[T]],
    *,
    attempts: int,
    interval: float,
    backoff: float = 1.0,
    max_interval: Optional[float] = None,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    sleep: Optional[Callable[[float], None]] = None,
    clock: Callable[[], float] = time.monotonic,
) -> PollOutcome[T]:
    """Call ``check`` until it returns something other than ``None``.

    At most ``attempts`` calls are made, separated by ``interval`` seconds
    (multiplied by ``backoff`` after every miss, capped at ``max_interval``).
    ``timeout`` bounds the whole loop in wall-clock seconds. Setting ``cancel``
    stops the loop at the next wait. No wait follows the final attempt.
    """
    if sleep is None:
        if cancel is not None:
            def sleep(seconds: float) -> None:
                cancel.wait(seconds)
        else:
            sleep = time.sleep

    deadline = clock() + timeout if timeout is not None else None
    delay = interval
    made = 0
    while made < attempts:
        if cancel is not None and cancel.is_set():
            return PollOutcome(None, made, cancelled=True)
        made += 1
        value = check()
        if value is not None:
            return PollOutcome(value, made)
        if made >= attempts:
            break
        wait = delay
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                return PollOutcome(None, made, timed_out=True)
            wait = min(wait, remaining)
        sleep(wait)
        delay = delay * backoff
        if max_interval is not None:
            delay = min(delay, max_interval)
    if cancel is not None and cancel.is_set():
        return PollOutcome(None, made, cancelled=True)
    return PollOutcome(None, made)

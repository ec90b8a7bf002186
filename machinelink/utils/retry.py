import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class TerminationPolicy:
    """How long kill_process waits for a terminated process before SIGKILL."""

    attempts: int = 5
    interval: float = 0.5


def poll_until(
    predicate: Callable[[], bool],
    attempts: int,
    interval: float,
    between: Callable[[], None] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll ``predicate`` up to ``attempts`` times, sleeping ``interval`` between tries.

    ``between`` runs after every failed poll (e.g. to re-send a signal).
    Returns True as soon as the predicate holds, False when attempts run out.
    """
    for _ in range(attempts):
        if predicate():
            return True
        sleep(interval)
        if between is not None:
            between()
    return False

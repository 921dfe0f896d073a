from __future__ import annotations

import asyncio
import signal
from typing import Callable, Iterable, List, Tuple

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_shutdown_handlers(
    loop: asyncio.AbstractEventLoop,
    callback: Callable[[signal.Signals], None],
    signals: Iterable[signal.Signals] = SHUTDOWN_SIGNALS,
) -> Callable[[], None]:
    """
    Route shutdown signals to ``callback`` on the event loop thread.

    Falls back to ``signal.signal`` where the loop cannot own signal handlers.
    Returns a function that restores the previous handlers.
    """
    installed: List[Tuple[signal.Signals, object, bool]] = []

    for sig in signals:
        try:
            loop.add_signal_handler(sig, callback, sig)
        except (NotImplementedError, RuntimeError):
            previous = signal.signal(sig, lambda signum, _frame: loop.call_soon_threadsafe(callback, signal.Signals(signum)))
            installed.append((sig, previous, False))
        else:
            installed.append((sig, None, True))

    def remove() -> None:
        for sig, previous, via_loop in installed:
            if via_loop:
                loop.remove_signal_handler(sig)
            else:
                signal.signal(sig, previous)
        installed.clear()

    return remove

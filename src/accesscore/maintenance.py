"""Optional background sweeper.

Evicts temporary grants that have already expired and prunes audit
entries past the retention window. Decisions never depend on it: expired
grants are already treated as absent at read time.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .engine import AccessEngine

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Daemon thread calling :meth:`sweep` every ``interval`` seconds.

    Usage::

        with ExpirySweeper(engine):
            serve()
    """

    def __init__(self, engine: AccessEngine, interval: Optional[float] = None) -> None:
        self.engine = engine
        self.interval = interval if interval is not None else engine.settings.sweep_interval_seconds
        if self.interval <= 0:
            raise ValueError("Sweep interval must be positive")
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def sweep(self) -> tuple[int, int]:
        """One pass. Returns ``(evicted_grants, pruned_audit_entries)``."""
        evicted = self.engine.evict_expired()
        pruned = self.engine.prune_audit()
        if evicted or pruned:
            logger.debug("Sweep evicted %d grants, pruned %d audit entries", evicted, pruned)
        return evicted, pruned

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Expiry sweep failed")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="accesscore-sweeper", daemon=True)
        self._thread.start()
        logger.info("Expiry sweeper started (interval=%ss)", self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def __enter__(self) -> ExpirySweeper:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()


__all__ = ["ExpirySweeper"]

"""
Reconciliation sweep.

Materializes ``Expired`` for overdue coupons and rolls back token
reservations whose holder never finalized them. Both sweeps are safe to run
at any time and concurrently with normal traffic; correctness never depends
on them running, only tidiness of stored state does.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..confirmation import ConfirmationGateway
from ..logging import LogContext, get_logger
from .coupon_ledger import CouponLedger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconciliationReport:
    """Outcome of one sweep."""

    expired_coupons: int = 0
    released_reservations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expired_coupons": self.expired_coupons,
            "released_reservations": self.released_reservations,
        }


class Reconciler:
    """Runs the sweeps on demand or periodically on a daemon thread."""

    def __init__(
        self,
        ledger: CouponLedger,
        gateway: ConfirmationGateway,
        interval: float = 60.0,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.ledger = ledger
        self.gateway = gateway
        self.interval = interval
        self.runs = 0

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> ReconciliationReport:
        report = ReconciliationReport(
            expired_coupons=self.ledger.expire_overdue(),
            released_reservations=self.gateway.reconcile(),
        )
        self.runs += 1
        logger.debug(
            "Reconciliation pass finished",
            context=LogContext(component="reconciler"),
            extra=report.to_dict(),
        )
        return report

    def start(self) -> None:
        """Start the periodic sweep."""
        with self._lock:
            if self.running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop, name="zkcoupon-reconciler", daemon=True
            )
            self._thread.start()

        logger.info(
            "Reconciler started",
            context=LogContext(component="reconciler"),
            extra={"interval": self.interval},
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the periodic sweep and wait for the thread to exit."""
        with self._lock:
            self._stop_event.set()
            if self._thread:
                self._thread.join(timeout=timeout)
            self._thread = None

        logger.info("Reconciler stopped", context=LogContext(component="reconciler"))

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.run_once()
            except Exception as e:
                logger.error(
                    f"Error in reconciliation loop: {e}",
                    context=LogContext(component="reconciler"),
                )

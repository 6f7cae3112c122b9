"""DHCP lease polling: resolve a MAC address to an IP address."""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional

from vmfleet.exceptions import ControlPlaneError
from vmfleet.models import LeaseResult
from vmfleet.polling import poll
from vmfleet.utils import log


class LeaseWatcher:
    def __init__(
        self,
        control,
        network: str,
        max_attempts: int,
        interval_seconds: float,
        *,
        backoff: float = 1.0,
        max_interval: Optional[float] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.control = control
        self.network = network
        self.max_attempts = max_attempts
        self.interval_seconds = interval_seconds
        self.backoff = backoff
        self.max_interval = max_interval
        self._sleep = sleep
        self._clock = clock

    def leases(self) -> List[Dict[str, object]]:
        return self.control.network_leases(self.network)

    def lookup(self, mac: str) -> Optional[str]:
        """Return the leased IP for ``mac`` or None; one pass, no waiting."""
        wanted = mac.lower()
        try:
            leases = self.leases()
        except ControlPlaneError as exc:
            log("DEBUG", f"Lease lookup on {self.network} failed: {exc.message}")
            return None
        for lease in leases:
            if str(lease.get("mac", "")).lower() != wanted:
                continue
            ip = lease.get("ipaddr")
            if ip:
                return str(ip).split("/", 1)[0]
        return None

    def wait(
        self,
        mac: str,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> LeaseResult:
        """Poll until ``mac`` has a lease or the attempt budget runs out.

        Running out is not an error: the guest may still be booting, so the
        result simply comes back unresolved.
        """
        outcome = poll(
            lambda: self.lookup(mac),
            attempts=self.max_attempts,
            interval=self.interval_seconds,
            backoff=self.backoff,
            max_interval=self.max_interval,
            timeout=timeout,
            cancel=cancel,
            sleep=self._sleep,
            clock=self._clock,
        )
        result = LeaseResult(
            mac_address=mac.lower(),
            ip_address=outcome.value,
            attempts=outcome.attempts,
            cancelled=outcome.cancelled,
        )
        if result.resolved:
            log("SUCCESS", f"{mac} got IP: {result.ip_address}")
        elif result.cancelled:
            log("WARN", f"Address resolution for {mac} cancelled after {outcome.attempts} attempts")
        else:
            log("WARN", f"Could not determine IP for {mac} after {outcome.attempts} attempts")
        return result

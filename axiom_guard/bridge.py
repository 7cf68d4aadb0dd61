"""
Axiom Guard Audit Bridge
========================

Forwards every engine decision to a remote audit monitor over HTTP.

Usage:
    from axiom_guard import create_engine
    from axiom_guard.bridge import AuditBridge

    engine = create_engine()
    bridge = AuditBridge(engine, monitor_url='http://localhost:8081')
    bridge.connect()

    # Every validation decision is now POSTed to <monitor>/api/decision.
    # Delivery failures are logged and never affect validation.
"""

import logging
import queue
import threading
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class AuditBridge:
    """Bridges a ConstitutionalEngine to a remote monitor."""

    def __init__(
        self,
        engine,
        monitor_url: str = 'http://localhost:8081',
        async_mode: bool = True,
        timeout: float = 1.0,
    ):
        """
        Initialize the bridge.

        Args:
            engine: ConstitutionalEngine instance
            monitor_url: Monitor API URL
            async_mode: If True, send from a background worker
            timeout: Per-request timeout in seconds
        """
        self.engine = engine
        self.monitor_url = monitor_url.rstrip('/')
        self.async_mode = async_mode
        self.timeout = timeout

        self._connected = False
        self._registered = False        # engine callbacks cannot be removed
        self._queue: Optional[queue.Queue] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self):
        """Connect the bridge and start forwarding decisions."""
        if self._connected:
            return

        if not self._registered:
            self.engine.on_decision(self._on_decision)
            self._registered = True

        if self.async_mode:
            self._queue = queue.Queue()
            self._thread = threading.Thread(target=self._worker, args=(self._queue,), daemon=True)
            self._thread.start()

        self._connected = True
        logger.info("Audit bridge connected to %s", self.monitor_url)

    def disconnect(self, wait: bool = True):
        """Stop forwarding. Pending decisions are sent before the worker exits."""
        if not self._connected:
            return
        self._connected = False
        if self._queue is not None:
            self._queue.put(None)  # Signal to stop
        if wait and self._thread is not None:
            self._thread.join(timeout=max(self.timeout * 2, 1.0))

    def _on_decision(self, decision):
        if not self._connected:
            return
        data = decision.to_dict()
        if self.async_mode:
            self._queue.put(data)
        else:
            self._send_decision(data)

    def _send_decision(self, data: Dict[str, Any]) -> bool:
        try:
            response = requests.post(
                f"{self.monitor_url}/api/decision",
                json=data,
                timeout=self.timeout,
            )
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.warning("Failed to forward decision to %s: %s", self.monitor_url, e)
            return False

    def _worker(self, pending: queue.Queue):
        """Background worker for async sending. Exits on None."""
        while True:
            item = pending.get()
            if item is None:
                break
            self._send_decision(item)


def connect_to_monitor(
    engine,
    monitor_url: str = 'http://localhost:8081',
    timeout: float = 1.0,
) -> AuditBridge:
    """
    Convenience function to connect an engine to a monitor.

    Usage:
        engine = create_engine()
        bridge = connect_to_monitor(engine)
    """
    bridge = AuditBridge(engine, monitor_url, timeout=timeout)
    bridge.connect()
    return bridge

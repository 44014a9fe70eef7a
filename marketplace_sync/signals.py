"""
Notification hooks emitted by the reconciler and the batch importer.

Listeners are plain callables connected to a Signal. Emission is
fire-and-forget: a receiver that raises is logged at WARNING and the remaining
receivers still run. The core guarantees emission order and payload only.

Signals:
    package_abandoned  Package record that just became abandoned.
    package_deleted    Package record removed by the post-import cleanup.
    vendor_deleted     Vendor record removed because it has no packages left.
    cache_flushed      Cache tag ("Node_<record id>") of a reconciled package.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

Receiver = Callable[[Any], None]


class Signal:
    """A named list of receivers."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._receivers: list[Receiver] = []
        self._lock = threading.Lock()

    def connect(self, receiver: Receiver) -> Receiver:
        """Register *receiver*; returns it so this works as a decorator."""
        with self._lock:
            self._receivers.append(receiver)
        return receiver

    def disconnect(self, receiver: Receiver) -> None:
        with self._lock:
            if receiver in self._receivers:
                self._receivers.remove(receiver)

    def send(self, payload: Any) -> None:
        with self._lock:
            receivers = list(self._receivers)
        for receiver in receivers:
            try:
                receiver(payload)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Receiver %r of signal %s failed: %s", receiver, self.name, exc)

    def __repr__(self) -> str:
        return f"Signal({self.name!r}, receivers={len(self._receivers)})"


@dataclass
class Signals:
    """The set of hooks shared by one reconciler/importer pair."""

    package_abandoned: Signal = field(default_factory=lambda: Signal("package_abandoned"))
    package_deleted: Signal = field(default_factory=lambda: Signal("package_deleted"))
    vendor_deleted: Signal = field(default_factory=lambda: Signal("vendor_deleted"))
    cache_flushed: Signal = field(default_factory=lambda: Signal("cache_flushed"))


def cache_tag(record_id: str) -> str:
    """Cache tag under which content derived from a record is stored."""
    return f"Node_{record_id}"

# Overview: Fire-and-forget stock alert delivery after ledger commits.

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Callable, Iterable

from flask import current_app


@dataclass(frozen=True)
class StockEvent:
    product_id: int
    new_stock: int
    crossed_threshold: str | None  # new status when it changed, else None
    ref_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


StockSink = Callable[[StockEvent], None]

_sinks: list[StockSink] = []


def register_sink(sink: StockSink) -> StockSink:
    """Add a receiver for stock events (email, UI push, ...)."""
    _sinks.append(sink)
    return sink


def unregister_sink(sink: StockSink) -> None:
    if sink in _sinks:
        _sinks.remove(sink)


def log_sink(event: StockEvent) -> None:
    if event.crossed_threshold:
        current_app.logger.info(
            "Stock alert: product %s now %s (stock=%s)",
            event.product_id, event.crossed_threshold, event.new_stock,
        )


def publish(events: Iterable[StockEvent]) -> int:
    """
    Deliver events to every sink; returns the number of failed deliveries.

    Runs after commit. A failing sink is logged and skipped: alerts can be
    lost, the transaction that produced them cannot be undone.
    """
    failures = 0
    for event in events:
        for sink in [log_sink, *_sinks]:
            try:
                sink(event)
            except Exception:
                failures += 1
                current_app.logger.exception(
                    "Stock alert sink %r failed for product %s", sink, event.product_id
                )
    return failures

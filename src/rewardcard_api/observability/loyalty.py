from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    stamps: Dict[str, int]
    cards: Dict[str, int]
    rejections: Dict[str, int]
    billing_events: Dict[str, Dict[str, int]]

    def as_dict(self) -> Dict[str, object]:
        return {
            "stamps": dict(self.stamps),
            "cards": dict(self.cards),
            "rejections": dict(self.rejections),
            "billing_events": {key: dict(value) for key, value in self.billing_events.items()},
        }


class LoyaltyObservabilityStore:
    """Collect stamp issuance and billing reconciliation telemetry for dashboards."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._stamps: Dict[str, int] = defaultdict(int)
        self._cards: Dict[str, int] = defaultdict(int)
        self._rejections: Dict[str, int] = defaultdict(int)
        self._billing_by_type: Dict[str, int] = defaultdict(int)
        self._billing_by_outcome: Dict[str, int] = defaultdict(int)

    def record_stamp_issued(self, *, completed: bool, retries: int = 0) -> None:
        with self._lock:
            self._stamps["issued"] += 1
            if completed:
                self._stamps["cards_completed"] += 1
            if retries:
                self._stamps["retries"] += retries

    def record_usage_rollover(self) -> None:
        with self._lock:
            self._stamps["rollovers"] += 1

    def record_card_created(self) -> None:
        with self._lock:
            self._cards["created"] += 1

    def record_card_race(self) -> None:
        with self._lock:
            self._cards["race_resolved"] += 1

    def record_rejection(self, code: str) -> None:
        with self._lock:
            self._rejections[code or "unknown"] += 1

    def record_billing_event(self, event_type: str, outcome: str) -> None:
        with self._lock:
            self._billing_by_type[event_type] += 1
            self._billing_by_outcome[outcome] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            return LoyaltySnapshot(
                stamps=dict(self._stamps),
                cards=dict(self._cards),
                rejections=dict(self._rejections),
                billing_events={
                    "by_type": dict(self._billing_by_type),
                    "by_outcome": dict(self._billing_by_outcome),
                },
            )

    def reset(self) -> None:
        with self._lock:
            self._stamps.clear()
            self._cards.clear()
            self._rejections.clear()
            self._billing_by_type.clear()
            self._billing_by_outcome.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]

"""In-process telemetry for settlement, pending codes and reconciliation."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock
from typing import Dict


@dataclass
class SettlementSnapshot:
    settlements: Dict[str, int]
    rejections: Dict[str, int]
    points: Dict[str, float]
    pending: Dict[str, int]
    reconciliation: Dict[str, int]
    jobs: Dict[str, Dict[str, object]]

    def as_dict(self) -> Dict[str, object]:
        return {
            "settlements": dict(self.settlements),
            "rejections": dict(self.rejections),
            "points": dict(self.points),
            "pending": dict(self.pending),
            "reconciliation": dict(self.reconciliation),
            "jobs": {job_id: dict(state) for job_id, state in self.jobs.items()},
        }


class SettlementObservabilityStore:
    """Collect settlement engine counters for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._settlements: Dict[str, int] = defaultdict(int)
        self._rejections: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, Decimal] = defaultdict(Decimal)
        self._pending: Dict[str, int] = defaultdict(int)
        self._reconciliation: Dict[str, int] = defaultdict(int)
        self._jobs: Dict[str, Dict[str, object]] = {}

    def record_settled(self, *, points_issued: Decimal, points_spent: Decimal) -> None:
        with self._lock:
            self._settlements["settled"] += 1
            self._points["issued"] += points_issued
            self._points["spent"] += points_spent

    def record_replayed(self) -> None:
        with self._lock:
            self._settlements["replayed"] += 1

    def record_rejected(self, code: str) -> None:
        with self._lock:
            self._settlements["rejected"] += 1
            self._rejections[code] += 1

    def record_compensation(self) -> None:
        with self._lock:
            self._settlements["compensated"] += 1

    def record_pending_event(self, event: str, count: int = 1) -> None:
        with self._lock:
            self._pending[event] += count

    def record_reconciliation(self, *, balances: int, corrected: int) -> None:
        with self._lock:
            self._reconciliation["runs"] += 1
            self._reconciliation["balances"] += balances
            self._reconciliation["corrected"] += corrected

    def record_job_run(self, job_id: str, *, success: bool, error: str | None = None) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            state = self._jobs.setdefault(job_id, {"runs": 0, "failures": 0, "last_run_at": None, "last_error": None})
            state["runs"] = int(state["runs"]) + 1
            state["last_run_at"] = now
            if success:
                state["last_error"] = None
            else:
                state["failures"] = int(state["failures"]) + 1
                state["last_error"] = error

    def snapshot(self) -> SettlementSnapshot:
        with self._lock:
            return SettlementSnapshot(
                settlements=dict(self._settlements),
                rejections=dict(self._rejections),
                points={key: float(value) for key, value in self._points.items()},
                pending=dict(self._pending),
                reconciliation=dict(self._reconciliation),
                jobs={job_id: dict(state) for job_id, state in self._jobs.items()},
            )

    def reset(self) -> None:
        with self._lock:
            self._settlements.clear()
            self._rejections.clear()
            self._points.clear()
            self._pending.clear()
            self._reconciliation.clear()
            self._jobs.clear()


_STORE = SettlementObservabilityStore()


def get_settlement_store() -> SettlementObservabilityStore:
    return _STORE


__all__ = ["get_settlement_store", "SettlementObservabilityStore", "SettlementSnapshot"]

"""Per-provider outcome tracking for aggregation runs."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .alerts import AlertDTO


@dataclass(slots=True)
class ProviderOutcome:
    """Settled result of one provider call: alerts on success, the error otherwise."""

    provider: str
    alerts: list[AlertDTO] = field(default_factory=list)
    error: BaseException | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "status": "ok" if self.ok else "failed",
            "alert_count": len(self.alerts),
            "error": None if self.error is None else f"{type(self.error).__name__}: {self.error}",
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class OutcomeReporter:
    """Collect provider outcomes across one or more aggregation calls.

    Instances are callable so they can be handed to the aggregator as its
    outcome observer.
    """

    run_id: str | None = None
    started_at: float = field(default=0.0, init=False)
    finished_at: float = field(default=0.0, init=False)
    outcomes: list[ProviderOutcome] = field(default_factory=list, init=False)

    def start_run(self) -> None:
        self.run_id = self.run_id or uuid.uuid4().hex
        self.started_at = time.time()

    def __call__(self, outcome: ProviderOutcome) -> None:
        self.outcomes.append(outcome)

    def finish_run(self) -> None:
        self.finished_at = time.time()

    @property
    def failed(self) -> list[ProviderOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    def summary(self) -> dict[str, Any]:
        if self.finished_at and self.started_at:
            duration = self.finished_at - self.started_at
        else:
            duration = 0.0
        return {
            "run_id": self.run_id,
            "duration_seconds": round(duration, 2),
            "providers": [outcome.as_dict() for outcome in self.outcomes],
        }

    def persist(self, directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{self.run_id}.json"
        path.write_text(json.dumps(self.summary(), indent=2), encoding="utf-8")
        return path

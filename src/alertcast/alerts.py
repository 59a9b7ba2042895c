"""Canonical alert models shared by every provider."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"
    EXTREME = "extreme"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


class Urgency(str, Enum):
    IMMEDIATE = "immediate"
    EXPECTED = "expected"
    FUTURE = "future"
    PAST = "past"

    @property
    def rank(self) -> int:
        return URGENCY_RANK[self]


class Certainty(str, Enum):
    LIKELY = "likely"
    OBSERVED = "observed"
    POSSIBLE = "possible"
    UNKNOWN = "unknown"


class AlertSource(str, Enum):
    OPENWEATHER = "openweather"
    METEOALARM = "meteoalarm"
    NWS = "nws"
    ENVCANADA = "envcanada"
    DWD = "dwd"


SEVERITY_RANK: dict[Severity, int] = {
    Severity.MINOR: 1,
    Severity.MODERATE: 2,
    Severity.SEVERE: 3,
    Severity.EXTREME: 4,
}

URGENCY_RANK: dict[Urgency, int] = {
    Urgency.IMMEDIATE: 3,
    Urgency.EXPECTED: 2,
    Urgency.FUTURE: 1,
    Urgency.PAST: 0,
}


class AlertDTO(BaseModel):
    """Normalised alert as returned to callers.

    Timestamps are ISO-8601 strings with a ``Z`` designator. Instances are
    frozen: enrichment produces a copy instead of mutating an alert that may
    already sit in a cached response.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    source: AlertSource
    event: str = Field(min_length=1)
    severity: Severity
    urgency: Urgency
    certainty: Certainty = Certainty.UNKNOWN
    areas: tuple[str, ...] = ()
    starts_at: str = Field(alias="startsAt")
    ends_at: str = Field(alias="endsAt")
    headline: str = Field(min_length=1)
    description: str = ""
    instruction: str = ""

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AlertsResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    updated_at: str = Field(alias="updatedAt")
    alerts: tuple[AlertDTO, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CountryMeta(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    providers: tuple[str, ...] = ()
    region_supported: bool = Field(alias="regionSupported")


class CountryAlertsResponse(AlertsResponse):
    meta: CountryMeta


@dataclass(frozen=True, slots=True)
class Coordinates:
    lat: float
    lon: float


@dataclass(frozen=True, slots=True)
class Country:
    code: str


Geography = Union[Coordinates, Country]

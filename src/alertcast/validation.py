"""Validation and normalisation of inbound alert queries."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .alerts import Severity
from .errors import QueryValidationError

ALLOWED_LANGUAGES = ("en", "de", "fr", "es", "it")
DEFAULT_LANGUAGE = "en"
DEFAULT_LIMIT = 120
MIN_LIMIT = 1
MAX_LIMIT = 500


def normalise_language(value: Any) -> str:
    """Map any input onto the language allow-list, falling back to English."""
    if not isinstance(value, str):
        return DEFAULT_LANGUAGE
    lang = value.strip().lower()
    return lang if lang in ALLOWED_LANGUAGES else DEFAULT_LANGUAGE


class CoordsQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90, allow_inf_nan=False)
    lon: float = Field(ge=-180, le=180, allow_inf_nan=False)
    lang: str = DEFAULT_LANGUAGE

    @field_validator("lang", mode="before")
    @classmethod
    def _lang(cls, value: Any) -> str:
        return normalise_language(value)


class CountryQuery(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    code: str
    lang: str = DEFAULT_LANGUAGE
    limit: int = DEFAULT_LIMIT
    area: str | None = None
    min_severity: Severity | None = Field(default=None, alias="minSeverity")

    @field_validator("code", mode="before")
    @classmethod
    def _code(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("country code must be a string")
        code = value.strip()
        if not 2 <= len(code) <= 3:
            raise ValueError("country code must be 2 or 3 characters")
        return code[:2].upper()

    @field_validator("lang", mode="before")
    @classmethod
    def _lang(cls, value: Any) -> str:
        return normalise_language(value)

    @field_validator("limit", mode="before")
    @classmethod
    def _limit_default(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_LIMIT
        return value

    @field_validator("limit")
    @classmethod
    def _limit_clamp(cls, value: int) -> int:
        return max(MIN_LIMIT, min(MAX_LIMIT, value))

    @field_validator("area", mode="before")
    @classmethod
    def _area(cls, value: Any) -> str | None:
        if value is None:
            return None
        area = str(value).strip()
        return area or None

    @field_validator("min_severity", mode="before")
    @classmethod
    def _min_severity(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value


def parse_coords_query(params: Mapping[str, Any]) -> CoordsQuery:
    try:
        return CoordsQuery.model_validate(dict(params))
    except ValidationError as exc:
        raise QueryValidationError(_issues(exc)) from exc


def parse_country_query(params: Mapping[str, Any]) -> CountryQuery:
    try:
        return CountryQuery.model_validate(dict(params))
    except ValidationError as exc:
        raise QueryValidationError(_issues(exc)) from exc


def _issues(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in error["loc"]) or "query",
            "message": error["msg"],
        }
        for error in exc.errors()
    ]

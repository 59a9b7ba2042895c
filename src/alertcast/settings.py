"""Configuration settings for Alertcast."""

from __future__ import annotations

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    openweather_api_key: str | None = None
    openweather_alerts_url: str = "https://api.openweathermap.org/data/3.0/onecall"

    nws_feed_url: str = "https://alerts.weather.gov/cap/us.php?x=1"
    envcanada_feed_url: str = "https://dd.weather.gc.ca/alerts/cap/Canada-cap.xml"
    meteoalarm_feed_base_url: str = "https://feeds.meteoalarm.org/feeds"
    meteoalarm_fetch_cap: bool = False

    alert_cache_ttl_seconds: float = 120.0
    alert_cache_sweep_seconds: float = 60.0
    http_timeout_seconds: float = 15.0
    http_user_agent: str = "Alertcast/1.0 (+https://example.com)"
    enrichment_timeout_seconds: float = 10.0
    enrichment_details_ttl_seconds: float = 900.0

    @model_validator(mode="after")
    def _check_values(self) -> "Settings":
        for attr in (
            "openweather_alerts_url",
            "nws_feed_url",
            "envcanada_feed_url",
            "meteoalarm_feed_base_url",
        ):
            value = getattr(self, attr)
            if not value or not str(value).strip():
                raise ValueError(f"{attr} must be configured")
        for attr in (
            "alert_cache_ttl_seconds",
            "alert_cache_sweep_seconds",
            "http_timeout_seconds",
            "enrichment_timeout_seconds",
            "enrichment_details_ttl_seconds",
        ):
            if getattr(self, attr) <= 0:
                raise ValueError(f"{attr} must be positive")
        # blank keys from .env templates count as missing
        if self.openweather_api_key is not None and not self.openweather_api_key.strip():
            self.openweather_api_key = None
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

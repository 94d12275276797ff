"""
Configuration management using Pydantic settings.
Service endpoints, scale thresholds and timeouts for the explorer.
"""
from __future__ import annotations

import os
import sys
from functools import lru_cache

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict


# Project directory (parent of core/)
PROJECT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="WQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Water Quality Portal
    wqp_monitoring_location_url: str = "https://www.waterqualitydata.us/data/Station/"
    wqp_result_search_url: str = "https://www.waterqualitydata.us/data/Result/search?"
    wqp_user_interface_url: str = "https://www.waterqualitydata.us/"

    # USGS Water Data OGC API
    usgs_latest_continuous_url: str = (
        "https://api.waterdata.usgs.gov/ogcapi/v0/collections/latest-continuous/items"
    )
    usgs_monitoring_locations_url: str = (
        "https://api.waterdata.usgs.gov/ogcapi/v0/collections/monitoring-locations/items"
    )
    usgs_daily_url: str = "https://api.waterdata.usgs.gov/ogcapi/v0/collections/daily/items"

    # Requests
    request_timeout: float = 60.0  # seconds

    # Surrounding features are only fetched below these map scales
    default_min_scale: float = 577_791
    monitoring_min_scale: float = 400_000

    # USGS services reject bounding boxes larger than this (square degrees)
    usgs_max_bbox_area: float = 25.0

    # Static lookup files
    lookup_dir: str = os.path.join(PROJECT_DIR, "data")

    # Page keys hidden behind a "disabled" notice, e.g. WQ_DISABLED_PAGES='["usgs_sensors"]'
    disabled_pages: list[str] = []

    log_level: str = "INFO"

    @property
    def services(self) -> dict[str, str]:
        """Endpoint URLs keyed by service name."""
        return {
            "monitoringLocation": self.wqp_monitoring_location_url,
            "resultSearch": self.wqp_result_search_url,
            "userInterface": self.wqp_user_interface_url,
            "latestContinuous": self.usgs_latest_continuous_url,
            "monitoringLocations": self.usgs_monitoring_locations_url,
            "daily": self.usgs_daily_url,
        }


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings instance."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Send loguru output to stderr at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=(level or get_settings().log_level).upper())

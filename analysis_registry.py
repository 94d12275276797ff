"""
Page registry for the explorer.
Each page is a runner that receives an AnalysisContext; the app picks one from the sidebar.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from core.config import Settings, get_settings
from core.data_loader import LookupFiles


@dataclass
class AnalysisContext:
    """What every page gets from the app shell"""
    lookups: LookupFiles
    settings: Settings
    project_dir: str

    # Registry key, also the prefix for the page's session state
    analysis_key: str


@dataclass(frozen=True)
class AnalysisSpec:
    """One selectable page"""
    key: str
    label: str
    title: str
    description: str
    runner: Callable[[AnalysisContext], None]
    layer_id: str
    enabled: bool = True


def _disabled_stub(label: str) -> Callable[[AnalysisContext], None]:
    def _run(context: AnalysisContext) -> None:
        import streamlit as st
        st.warning(f"{label} is turned off on this server.")
    return _run


def build_registry(settings: Optional[Settings] = None) -> Dict[str, AnalysisSpec]:
    """
    Build the page registry.

    Page modules are imported here rather than at module load so that the
    app shell starts without pulling in every page's dependencies.

    Args:
        settings: Source of the disabled page keys (defaults to get_settings())

    Raises:
        ValueError: If two pages share a key
    """
    from analyses.monitoring_locations import analysis as past_conditions
    from analyses.monitoring_locations.queries import LAYER_ID as MONITORING_LAYER_ID
    from analyses.usgs_sensors import analysis as current_conditions
    from analyses.usgs_sensors.queries import LAYER_ID as STREAMGAGES_LAYER_ID

    settings = settings or get_settings()
    specs = [
        AnalysisSpec(
            key="past_water_conditions",
            label="Past Water Conditions",
            title="💧 Past Water Conditions",
            description="Explore historical water quality monitoring locations and their measurements by year.",
            runner=past_conditions.main,
            layer_id=MONITORING_LAYER_ID,
        ),
        AnalysisSpec(
            key="usgs_sensors",
            label="Current Water Conditions",
            title="📈 Current Water Conditions",
            description="View the latest readings from USGS sensors in and around a watershed.",
            runner=current_conditions.main,
            layer_id=STREAMGAGES_LAYER_ID,
        ),
    ]

    registry: Dict[str, AnalysisSpec] = {}
    for spec in specs:
        if spec.key in registry:
            raise ValueError(f"Duplicate page key: {spec.key}")
        if spec.key in settings.disabled_pages:
            spec = dataclasses.replace(spec, enabled=False, runner=_disabled_stub(spec.label))
        registry[spec.key] = spec
    return registry

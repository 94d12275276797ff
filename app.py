"""
Water Quality Explorer
Past water conditions from the Water Quality Portal and current conditions
from USGS sensors, for a watershed and the area around it.
"""
from __future__ import annotations

import streamlit as st
from loguru import logger

from analysis_registry import AnalysisContext, build_registry
from core.config import PROJECT_DIR, configure_logging, get_settings
from core.data_loader import LookupFiles


# Page configuration
st.set_page_config(
    page_title="Water Quality Explorer",
    page_icon="💧",
    layout="wide",
    initial_sidebar_state="expanded"
)


@st.cache_resource
def load_lookups() -> LookupFiles:
    """Read the lookup files once per server process."""
    configure_logging()
    lookups = LookupFiles()
    lookups.load_sync()
    logger.info(f"Loaded lookup files from {lookups.lookup_dir}")
    return lookups


try:
    lookups = load_lookups()
except (OSError, ValueError, KeyError) as e:
    st.error(f"Could not load configuration files: {e}")
    st.stop()

registry = build_registry()

# SIDEBAR: Page selection at the top
st.sidebar.markdown("### 📊 Select Water Conditions")
selected_key = st.sidebar.selectbox(
    "Choose a view:",
    list(registry),
    format_func=lambda k: registry[k].label,
    help="Past conditions come from the Water Quality Portal; current conditions from USGS sensors",
)
st.sidebar.markdown("---")

spec = registry[selected_key]
st.title(spec.title)
st.caption(spec.description)

context = AnalysisContext(
    lookups=lookups,
    settings=get_settings(),
    project_dir=PROJECT_DIR,
    analysis_key=spec.key,
)
spec.runner(context)

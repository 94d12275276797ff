"""
Page widgets shared by the explorer pages.
Metric rows, fetch status banners and the data table expander.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
import streamlit as st

from components.feature_layer import FeatureLayer
from core.fetch_state import FetchStatus


def render_metrics_row(metrics: List[Dict[str, Any]]) -> None:
    """
    Show metrics side by side, one column each.

    Example:
        render_metrics_row([
            {"label": "Locations", "value": 12},
            {"label": "Measurements", "value": "4,210"},
        ])
    """
    if not metrics:
        return
    for col, metric in zip(st.columns(len(metrics)), metrics):
        col.metric(metric["label"], metric["value"])


def render_fetch_status(label: str, status: FetchStatus) -> bool:
    """
    Show a banner for a dataset that isn't ready.

    Returns:
        True when the dataset loaded successfully
    """
    if status == FetchStatus.PENDING:
        st.info(f"Loading {label}...")
    elif status == FetchStatus.FAILURE:
        st.error(f"{label} is unavailable. Please try again later.")
    return status == FetchStatus.SUCCESS


def render_data_expander(
    title: str,
    df: Optional[pd.DataFrame],
    display_columns: Optional[Sequence[str]] = None,
    download_filename: Optional[str] = None,
    download_key: Optional[str] = None,
) -> None:
    """
    Collapsible table with an optional CSV download of the full frame.

    Args:
        title: Expander title (e.g., "View Monitoring Locations")
        df: Rows to show; nothing is drawn when empty
        display_columns: Columns shown in the table (None = all)
        download_filename: CSV filename (None = no download button)
        download_key: Widget key for the download button
    """
    if df is None or df.empty:
        return

    with st.expander(title):
        shown = [c for c in (display_columns or []) if c in df.columns]
        st.dataframe(df[shown] if shown else df, use_container_width=True)
        if download_filename and download_key:
            st.download_button(
                "Download CSV",
                df.to_csv(index=False),
                file_name=download_filename,
                mime="text/csv",
                key=download_key,
            )


def layer_table(layer: FeatureLayer, columns: Sequence[str]) -> pd.DataFrame:
    """The features currently drawn on a layer, one row each, in the given columns."""
    return pd.DataFrame([{c: attrs.get(c) for c in columns} for attrs in layer.attributes()], columns=list(columns))

"""
Session state management for explorer pages.
Keeps the long-lived map, dataset and controller objects of a page alive
across Streamlit reruns, and runs their async work on a per-rerun loop.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import streamlit as st
from loguru import logger

T = TypeVar("T")


class AnalysisState:
    """
    Session state for one explorer page.

    Every key is prefixed with the page key, so the two pages never share
    controllers or map state.

    Example:
        state = AnalysisState(context.analysis_key)
        session = state.get_or_create("session", lambda: build_session(context))
        huc12 = st.text_input("HUC12", key=state.widget_key("huc12"))
        state.run(refresh(session, huc12))
    """

    def __init__(self, analysis_key: str):
        self.analysis_key = analysis_key

    def _key(self, key: str) -> str:
        return f"{self.analysis_key}_{key}"

    def get_or_create(self, key: str, factory: Callable[[], T]) -> T:
        """
        Return the stored object, building it with factory on first use.

        Args:
            key: The key name (will be prefixed with analysis_key)
            factory: Zero-argument builder for the object
        """
        full_key = self._key(key)
        if full_key not in st.session_state:
            logger.debug(f"Creating session object {full_key}")
            st.session_state[full_key] = factory()
        return st.session_state[full_key]

    @property
    def widget_key(self) -> Callable[[str], str]:
        """Prefixer for widget keys, e.g. state.widget_key("map")."""
        return self._key

    def run(self, coro: Awaitable[T]) -> T:
        """
        Run one rerun's worth of async work to completion.

        Controllers spawn their tasks on whatever loop is running when an
        event fires, so everything that can fire an event happens inside
        this call.
        """
        return asyncio.run(coro)

"""
Core Module
Provides generic utilities for settings, service requests, fetch state,
extent resolution and lookup-file loading.
"""
from core.config import (
    Settings,
    configure_logging,
    get_settings,
)

from core.errors import (
    AbortError,
    EditConflict,
    NoExtentAvailable,
    ServiceFailure,
    WaterDataError,
)

from core.observable import Observable, Subscription

from core.fetch_state import (
    FetchedDataStore,
    FetchState,
    FetchStatus,
    handle_fetch_error,
    is_abort,
)

from core.services import (
    AbortController,
    AbortHandle,
    AbortSignal,
    cql_in_filter,
    fetch_check,
    fetch_parse_csv,
    fetch_post,
    parse_float,
    parse_int,
)

from core.extent import (
    Extent,
    get_extent_bounding_box,
    get_geographic_extent,
    resolve_extent_filter,
    to_fixed_float,
    web_mercator_to_geographic,
)

from core.data_loader import (
    CharacteristicGroupMapping,
    LookupFiles,
    UsgsStaParameter,
)

__all__ = [
    # Config
    "Settings",
    "configure_logging",
    "get_settings",
    # Errors
    "AbortError",
    "EditConflict",
    "NoExtentAvailable",
    "ServiceFailure",
    "WaterDataError",
    # State
    "Observable",
    "Subscription",
    "FetchedDataStore",
    "FetchState",
    "FetchStatus",
    "handle_fetch_error",
    "is_abort",
    # Services
    "AbortController",
    "AbortHandle",
    "AbortSignal",
    "cql_in_filter",
    "fetch_check",
    "fetch_parse_csv",
    "fetch_post",
    "parse_float",
    "parse_int",
    # Extent
    "Extent",
    "get_extent_bounding_box",
    "get_geographic_extent",
    "resolve_extent_filter",
    "to_fixed_float",
    "web_mercator_to_geographic",
    # Lookup files
    "CharacteristicGroupMapping",
    "LookupFiles",
    "UsgsStaParameter",
]

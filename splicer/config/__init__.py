"""
Branch Splicer - Configuration

Runtime settings (environment) and the static routing table.
"""

from .routing import (
    DEFAULT_ROUTING,
    RoutingSpan,
    RoutingTable,
    SubmissionLayout,
    get_routing_table,
    load_routing_table,
    reset_routing_table,
)
from .settings import Settings, configure_logging, get_settings, reset_settings

__all__ = [
    "Settings",
    "get_settings",
    "reset_settings",
    "configure_logging",
    "RoutingSpan",
    "RoutingTable",
    "SubmissionLayout",
    "DEFAULT_ROUTING",
    "get_routing_table",
    "load_routing_table",
    "reset_routing_table",
]

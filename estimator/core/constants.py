"""Shared constants for the estimator.

This module contains constants that are used across multiple modules
to avoid duplication and ensure consistency.
"""

# =============================================================================
# Line Item Defaults
# =============================================================================

DEFAULT_CURRENCY = "USD"

DEFAULT_PROJECT_TITLE = "Untitled Project"

DEFAULT_UNIT_TYPE = "unit"

DEFAULT_ITEM_STATUS = "active"

DEFAULT_PROJECT_STATUS = "draft"

# Valid unit types accepted from range updates
VALID_UNIT_TYPES = ("hour", "day", "unit", "package")

# Cost classification
COST_TYPES = ("material", "labor", "equipment", "overhead", "admin", "other")

# Attributes whose values are always kept as strings by the action parser
CATEGORICAL_KEYS = frozenset({"cost_type", "unit_type", "status"})

# =============================================================================
# Prompt / Pagination Limits
# =============================================================================

# Maximum number of existing line items rendered into a prompt
MAX_CONTEXT_ITEMS = 300

# Default page size for line item listing
DEFAULT_PAGE_SIZE = 300

# Progress events are emitted after each batch of this many instructions
PROGRESS_BATCH_SIZE = 10

# =============================================================================
# Streaming
# =============================================================================

HEARTBEAT_INTERVAL_SECONDS = 30.0

# Default window before a stream is force-terminated
STREAM_TIMEOUT_SECONDS = 600.0

MAX_CONNECTIONS_PER_USER = 3

# Partial extraction only runs once the buffer exceeds this many characters
PARTIAL_MIN_LENGTH = 300

# Grace period for session flush during shutdown
SHUTDOWN_DRAIN_SECONDS = 5.0

# Upper bound on the whole graceful shutdown before connections are cut
GRACEFUL_SHUTDOWN_SECONDS = 15.0

NDJSON_MEDIA_TYPE = "application/x-ndjson"

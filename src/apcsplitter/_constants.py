"""Internal constants shared across the service."""

SERVICE_NAME = "apc-vehicle-position-splitter"

#: Default replay window: two days in seconds.
DEFAULT_CACHE_WINDOW_SECONDS = 2 * 24 * 60 * 60

#: When the replay window yields nothing, seek again this many windows back.
EXTENDED_WINDOW_FACTOR = 7

PASSENGER_COUNTER = "PASSENGER_COUNTER"

# ------------------------------------------------------------------
# Outbound message properties
# ------------------------------------------------------------------

ORIGIN_MESSAGE_ID_PROPERTY = "originMessageId"
IS_SERVICING_PROPERTY = "isServicing"
# Written by older deployments instead of ``isServicing``.
LEGACY_NOT_SERVICING_PROPERTY = "notServicing"

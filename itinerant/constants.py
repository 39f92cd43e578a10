"""Shared constants for itinerant."""

GENERATE_TOPIC = "itinerary.generate"
RECORD_KEY_PREFIX = "itinerary"
INDEX_KEY_PREFIX = "index"
INDEX_MAX_ENTRIES = 100

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DURATION_DAYS = 3
MAX_DURATION_DAYS = 30
MIN_TRAVEL_TIPS = 3

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_MAX_WAIT = 300.0
DEFAULT_NOT_FOUND_GRACE = 10.0

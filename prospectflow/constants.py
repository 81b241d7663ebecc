"""Shared constants for prospectflow."""

STATE_EXPORT_VERSION = "1.0.0"

DEFAULT_SEARCH_LIMIT = 50
DEFAULT_STATE_RETENTION_DAYS = 30

# Retry delays in milliseconds, keyed by the error class they apply to.
RATE_LIMIT_RETRY_DELAY_MS = 60_000
SERVICE_UNAVAILABLE_RETRY_DELAY_MS = 30_000
DEFAULT_RETRY_DELAY_MS = 1_000

DEFAULT_BATCH_CONCURRENCY = 3
DEFAULT_REQUEST_DELAY = 1.0
DEFAULT_MAX_JOB_ATTEMPTS = 3
DEFAULT_JOB_BACKOFF_BASE = 5.0
DEFAULT_ACCOUNTED_CACHE_SIZE = 10_000

DEFAULT_CALL_TIMEOUT = 120.0
DEFAULT_WEBSITE_PAGES = 3
MAX_WEBSITE_PAGES = 10

ENRICHMENT_TOPIC = "prospect-enrichment"
EVENT_TOPIC_PREFIX = "workflow-events"

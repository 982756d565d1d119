"""Default configuration constants for pqinbox."""

# HTTP settings (milliseconds)
DEFAULT_BASE_URL = "https://api.pqinbox.dev"
DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_RETRY_DELAY_MS = 1_000
DEFAULT_MAX_RETRIES = 3

# Retried by the HTTP layer with exponential backoff
DEFAULT_RETRY_STATUS_CODES = (408, 429, 500, 502, 503, 504)

# Polling strategy settings (milliseconds)
DEFAULT_POLLING_INTERVAL_MS = 2_000
DEFAULT_POLLING_MAX_BACKOFF_MS = 30_000
DEFAULT_POLLING_BACKOFF_MULTIPLIER = 1.5
DEFAULT_POLLING_JITTER_FACTOR = 0.3

# SSE strategy settings
DEFAULT_SSE_RECONNECT_INTERVAL_MS = 5_000
DEFAULT_SSE_MAX_RECONNECT_ATTEMPTS = 10
DEFAULT_SSE_CONNECT_TIMEOUT_MS = 5_000

# Wait settings (milliseconds)
DEFAULT_WAIT_TIMEOUT_MS = 30_000

# Inbox lifetime bounds (seconds)
MIN_TTL_SECONDS = 60
MAX_TTL_SECONDS = 604_800

"""Configuration constants for fetchguard"""

from pathlib import Path

# Retrying fetch controller
MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0  # Seconds, doubled per retry
BACKOFF_MULTIPLIER = 2.0
DEFAULT_ATTEMPT_TIMEOUT = None  # No per-attempt timeout unless requested

# Rate-limit gate
UNKNOWN_ADDRESS = "unknown"
DEFAULT_RETRY_AFTER = 60  # Seconds, used when a 429 carries no hint
ARBITER_URL = "http://localhost:54321/functions/v1/rate-limiter"
ADDRESS_LOOKUP_URL = "https://api.ipify.org?format=json"
DEFAULT_REQUEST_TIMEOUT = 10.0  # Seconds

# Circuit breaker around the arbiter
CIRCUIT_BREAKER_THRESHOLD = 3  # Failures before opening circuit
CIRCUIT_BREAKER_TIMEOUT = 60  # Seconds before trying the arbiter again

# Risk tiers (sum of all violation counters)
MEDIUM_RISK_THRESHOLD = 3
HIGH_RISK_THRESHOLD = 5
CRITICAL_RISK_THRESHOLD = 10
HIGH_RISK_BLOCK_MINUTES = 30
CRITICAL_RISK_BLOCK_MINUTES = 24 * 60

# Limit multipliers applied by the local arbiter, with the floor for each tier
RISK_LIMIT_ADJUSTMENTS = {
    "medium": (0.75, 3),
    "high": (0.5, 2),
    "critical": (0.25, 1),
}

# Endpoint limits: (window seconds, max requests, adjust for reputation)
ENDPOINT_LIMITS = {
    "default": (60, 100, True),
    "auth": (3600, 15, False),
    "invitation": (3600, 20, True),
    "payment": (300, 10, True),
    "sms-verification": (3600, 5, True),
    "admin-access": (60, 50, True),
    "profile-access": (60, 30, True),
}

# Reputation storage
DEFAULT_STORE_FILE = Path("./data/ip_reputation.json")
DEFAULT_LOG_FILE = Path("./logs/fetchguard.log")

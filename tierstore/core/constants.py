"""
System-Wide Constants for the Tiered Record Store

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# SIZE AND TIME UNITS
# =============================================================================
KB: Final[int] = 1024
MB: Final[int] = 1024 * KB

SECOND_MS: Final[int] = 1000
MINUTE_MS: Final[int] = 60 * SECOND_MS

NS_PER_MS: Final[int] = 1_000_000
NS_PER_S: Final[int] = 1_000_000_000
NS_PER_DAY: Final[int] = 86_400 * NS_PER_S

# =============================================================================
# RECORD LIMITS
# =============================================================================
MAX_PAYLOAD_BYTES: Final[int] = 300 * KB
MAX_IDENTIFIER_BYTES: Final[int] = 512
KEY_SEPARATOR: Final[str] = "/"

# =============================================================================
# TIERING DEFAULTS
# =============================================================================
DEFAULT_AGE_THRESHOLD_DAYS: Final[int] = 90
DEFAULT_SCAN_PAGE_SIZE: Final[int] = 500
MAX_SCAN_PAGE_SIZE: Final[int] = 10_000
DEFAULT_CYCLE_INTERVAL_S: Final[int] = 86_400
DEFAULT_MIGRATION_PARALLELISM: Final[int] = 8
MAX_MIGRATION_PARALLELISM: Final[int] = 64
DEFAULT_JOB_ID: Final[str] = "default"

# =============================================================================
# TIMEOUTS
# =============================================================================
DEFAULT_OPERATION_TIMEOUT_S: Final[float] = 10.0
DEFAULT_VERIFY_TIMEOUT_S: Final[float] = 30.0

# =============================================================================
# RELIABILITY
# =============================================================================
RETRY_BASE_MS: Final[int] = 100
RETRY_MAX_DELAY_MS: Final[int] = 10_000
RETRY_MAX_ATTEMPTS: Final[int] = 3
CIRCUIT_BREAKER_FAILURE_THRESHOLD: Final[int] = 5
CIRCUIT_BREAKER_SUCCESS_THRESHOLD: Final[int] = 2
CIRCUIT_BREAKER_RESET_S: Final[float] = 30.0

# =============================================================================
# COLD RECORD FRAME
# =============================================================================
COLD_FRAME_MAGIC: Final[bytes] = b"TSR1"
COLD_FRAME_VERSION: Final[int] = 1

# =============================================================================
# CURSOR
# =============================================================================
CURSOR_VERSION: Final[int] = 1
CURSOR_CHECKSUM_SECRET: Final[bytes] = b"tierstore-cursor-v1"

# =============================================================================
# JOB LEASE
# =============================================================================
DEFAULT_LEASE_TTL_S: Final[float] = 30.0
MIN_LEASE_TTL_MS: Final[int] = 1000
LEASE_CLOCK_DRIFT_FACTOR: Final[float] = 0.01

"""
Global constants for billschedule.

This module centralizes magic strings, defaults and validation bounds so the
scanner, reconciler and CLI agree on them.
"""

from decimal import Decimal

# ============================================================================
# File Paths and Environment
# ============================================================================

DEFAULT_LEDGER_FILE = "ledger.yaml"
LEDGER_FILE_VERSION = "1.0"

# Environment variable for ledger discovery
ENV_LEDGER_FILE = "BILLSCHEDULE_FILE"

# ============================================================================
# Default Configuration Values
# ============================================================================

DEFAULT_PAYMENT_WINDOW_DAYS = 30
DEFAULT_LOOKAHEAD_HOURS = 24
DEFAULT_CURRENCY = "USD"
DEFAULT_RECURRENCE_MONTHS = 1

# ============================================================================
# Validation Constraints
# ============================================================================

MIN_DAY_OF_MONTH = 1
MAX_DAY_OF_MONTH = 31
LAST_DAY_OF_MONTH_INDICATOR = -1
MAX_PERCENTAGE = Decimal("100")

# ============================================================================
# Financial/Decimal Constants
# ============================================================================

CENTS_PRECISION = Decimal("0.01")  # Currency rounding precision
ZERO_AMOUNT = Decimal("0.00")
HUNDRED = Decimal("100")

# ============================================================================
# Batch Actions (reported per item)
# ============================================================================

ACTION_RECURRING_UPDATED = "recurring_updated"
ACTION_ONE_TIME_COMPLETED = "one_time_completed"
ACTION_ERROR = "error"

# ============================================================================
# Display/Formatting Constants
# ============================================================================

MAX_TABLE_COLUMN_WIDTH = 30
ID_LENGTH = 12

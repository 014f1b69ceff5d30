# compilegate/core/contract.py
"""
CompileGate Decision Contract

This module defines the locked constants behind both decision engines:
how much attempt history is retained, how long a subject backs off after
an attempt, and the exit codes consumed by process orchestration.

If you change any constants in here, bump COMPILEGATE_DECISION_VERSION.
"""

COMPILEGATE_DECISION_VERSION = "0.1.0"

SECONDS_PER_DAY = 86_400

# Compilation log history (ring buffer capacity)
MAX_LOGGED_ENTRIES = 4

# Backoff rules
# After a success the same subject/trigger cools down for half a day.
# After k consecutive failures it waits FAILURE_BACKOFF_BASE_SECONDS * 2**(k-1).
SUCCESS_BACKOFF_SECONDS = SECONDS_PER_DAY // 2
FAILURE_BACKOFF_BASE_SECONDS = SECONDS_PER_DAY

# Profile significance thresholds (percent growth over the reference)
MIN_NEW_METHODS_PERCENT_CHANGE = 20
MIN_NEW_CLASSES_PERCENT_CHANGE = 20

# Profile file locking
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0
LOCK_POLL_SECONDS = 0.05

# `compilegate check` exit codes
EXIT_OKAY = 0
EXIT_COMPILATION_REQUIRED = 1
EXIT_USAGE = 2
EXIT_IO_ERROR = 4

"""
Centralized application configuration.

Edit the variables below to configure development settings.
"""

import logging

# =============================================================================
# DEVELOPMENT SETTINGS - Edit these for local development
# =============================================================================
LOG_LEVEL = "DEBUG"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
LOG_TO_CONSOLE = True  # Set to True to output logs to terminal
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5
LIBRARY_LOG_LEVEL = logging.WARNING  # faster-whisper records forwarded to the app log
# =============================================================================

# =============================================================================
# MODEL LOADING PROGRESS
# =============================================================================
SPECIALIZATION_PROGRESS_RATIO = 0.7  # Share of the bar reserved for download
PREWARM_TARGET = 0.9  # Simulated prewarm progress stops here
PREWARM_MAX_SECONDS = 240  # Expected worst-case prewarm duration
PROGRESS_TICK_MS = 100
# =============================================================================


def get_log_level() -> int:
    """Get the logging level as an integer."""
    return getattr(logging, LOG_LEVEL.upper(), logging.INFO)

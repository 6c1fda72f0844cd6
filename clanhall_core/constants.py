"""Global constants for the ClanHall provisioning bot."""

from __future__ import annotations

# ============================================================================
# Provisioning pacing (seconds)
# ============================================================================

DEFAULT_MUTATION_DELAY_SECONDS = 0.5  # after each create call
DEFAULT_OVERWRITE_DELAY_SECONDS = 0.05  # after each overwrite edit

# ============================================================================
# Wizard sessions
# ============================================================================

DEFAULT_SESSION_TIMEOUT_MINUTES = 30
DEFAULT_COMPLETED_RETENTION_MINUTES = 5
SESSION_SWEEP_INTERVAL_SECONDS = 300

# ============================================================================
# Snapshots
# ============================================================================

SNAPSHOT_SCHEMA_VERSION = 1
DEFAULT_SNAPSHOT_DIRECTORY = "data/snapshots"
DEFAULT_MAX_SNAPSHOTS_PER_GUILD = 25

# ============================================================================
# Reporting
# ============================================================================

DEFAULT_SUMMARY_ERROR_LIMIT = 5

# ============================================================================
# Audit reasons shown in the guild audit log
# ============================================================================

REASON_SETUP = "ClanHall setup wizard"
REASON_RESTORE = "ClanHall restore from snapshot"

# ============================================================================
# Embed Limits (Discord API limits)
# ============================================================================

EMBED_DESCRIPTION_MAX_LENGTH = 4096
EMBED_FIELD_VALUE_MAX_LENGTH = 1024
EMBED_MAX_FIELDS = 25
MAX_BUTTONS_PER_ROW = 5
MAX_SELECT_OPTIONS = 25

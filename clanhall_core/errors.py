"""Error taxonomy for provisioning, restore and the setup wizard."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional


class ClanHallError(Exception):
    """Base exception carrying an error type and an optional suggestion."""

    ERROR_TYPES = {
        "session": "⚠️ Session Error",
        "ownership": "🔒 Not Your Session",
        "transition": "⚠️ Invalid Step",
        "configuration": "❌ Configuration Error",
        "not_found": "🔍 Not Found",
        "unknown": "❓ Unknown Error",
    }

    error_type = "unknown"

    def __init__(self, message: str, actionable_suggestion: Optional[str] = None):
        super().__init__(message)
        self.actionable_suggestion = actionable_suggestion

    def format_for_user(self) -> str:
        """Format error message for user display with actionable suggestions."""
        prefix = self.ERROR_TYPES.get(self.error_type, self.ERROR_TYPES["unknown"])
        formatted = f"{prefix}\n{self}"
        if self.actionable_suggestion:
            formatted += f"\n\n💡 **Suggestion:** {self.actionable_suggestion}"
        return formatted


# Session errors: rejected with no state change


class SessionError(ClanHallError):
    error_type = "session"


class NoActiveSessionError(SessionError):
    def __init__(self, workspace_id: int):
        super().__init__(
            f"No setup wizard is running for server {workspace_id}.",
            actionable_suggestion="Start a new wizard with `/setupwizard`.",
        )
        self.workspace_id = workspace_id


class SessionOwnershipError(SessionError):
    error_type = "ownership"

    def __init__(self, workspace_id: int, owner_id: int, user_id: int):
        super().__init__(
            "Only the administrator who started this setup wizard can use it.",
            actionable_suggestion="Wait for the current wizard to finish or time out.",
        )
        self.workspace_id = workspace_id
        self.owner_id = owner_id
        self.user_id = user_id


class SessionConflictError(SessionError):
    def __init__(self, workspace_id: int, owner_id: int):
        super().__init__(
            f"Another administrator (<@{owner_id}>) is already running the setup wizard here.",
            actionable_suggestion="Wait for their wizard to finish or time out.",
        )
        self.workspace_id = workspace_id
        self.owner_id = owner_id


class InvalidTransitionError(SessionError):
    error_type = "transition"


class InvalidSelectionError(SessionError):
    error_type = "transition"


# Configuration errors: the operation aborts before any remote call


class ConfigurationError(ClanHallError):
    error_type = "configuration"


class UnknownTemplateError(ConfigurationError):
    error_type = "not_found"

    def __init__(self, template_key: str, available: Iterable[str] = ()):
        options = ", ".join(sorted(available))
        super().__init__(
            f"Template '{template_key}' does not exist.",
            actionable_suggestion=f"Choose one of: {options}" if options else None,
        )
        self.template_key = template_key


class UnknownPolicyError(ConfigurationError):
    error_type = "not_found"

    def __init__(self, policy: str, available: Iterable[str] = ()):
        options = ", ".join(sorted(available))
        super().__init__(
            f"Permission policy '{policy}' does not exist.",
            actionable_suggestion=f"Choose one of: {options}" if options else None,
        )
        self.policy = policy


class SnapshotNotFoundError(ConfigurationError):
    error_type = "not_found"

    def __init__(self, workspace_id: int, snapshot_id: str):
        super().__init__(
            f"Snapshot '{snapshot_id}' was not found for server {workspace_id}.",
            actionable_suggestion="Use `/snapshot list` to see available snapshots.",
        )
        self.workspace_id = workspace_id
        self.snapshot_id = snapshot_id


class SnapshotFormatError(ConfigurationError):
    pass


class SnapshotMismatchError(ConfigurationError):
    def __init__(self, workspace_id: int, snapshot_workspace_id: int):
        super().__init__(
            f"Snapshot belongs to server {snapshot_workspace_id} and cannot be restored into {workspace_id}.",
            actionable_suggestion="Identifiers are not portable between servers.",
        )
        self.workspace_id = workspace_id
        self.snapshot_workspace_id = snapshot_workspace_id


# Per-entity records accumulated by best-effort operations


@dataclass(frozen=True)
class EntityError:
    """A single failed remote operation, recorded instead of raised."""
    kind: str
    entity: str
    operation: str
    message: str

    def describe(self) -> str:
        return f"{self.operation} {self.kind} '{self.entity}': {self.message}"


def describe_exception(exc: BaseException) -> str:
    text = str(exc).strip()
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


def summarize_errors(errors: Iterable[EntityError | str], limit: int) -> str:
    """Render a bullet list of errors, truncated with an "and N more" marker."""
    lines = [e.describe() if isinstance(e, EntityError) else str(e) for e in errors]
    if not lines:
        return "No errors."

    shown = [f"• {line}" for line in lines[:limit]]
    remaining = len(lines) - limit
    if remaining > 0:
        shown.append(f"…and {remaining} more")
    return "\n".join(shown)

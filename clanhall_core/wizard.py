"""Setup wizard state machine.

The orchestrator owns no Discord objects: every transition returns a
data-only ``StepView`` which the setup cog turns into an embed and buttons.
Only ``confirm`` touches the guild.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from .constants import (
    DEFAULT_COMPLETED_RETENTION_MINUTES,
    DEFAULT_SESSION_TIMEOUT_MINUTES,
    DEFAULT_SUMMARY_ERROR_LIMIT,
)
from .database import ClanLink, Database
from .errors import (
    EntityError,
    InvalidSelectionError,
    InvalidTransitionError,
    NoActiveSessionError,
    SessionConflictError,
    SessionOwnershipError,
    describe_exception,
    summarize_errors,
)
from .features import DEFAULT_FEATURES, FEATURES, ClanChoice, configure_features
from .logger import get_audit_logger, get_logger
from .permissions import CUSTOM_POLICY, POLICIES, POLICY_DESCRIPTIONS, SUBJECT_KEYS, apply
from .platform import PlatformClient
from .rate_limiter import MutationPacer, PacingSettings
from .reconciler import (
    PlanSummary,
    plan_roles,
    plan_structure,
    reconcile_roles,
    reconcile_structure,
    resolve_role_ids,
)
from .templates import (
    CLAN_POSITION_ROLES,
    DEFAULT_TEMPLATE_KEY,
    ROLE_SETS,
    SERVER_TEMPLATES,
    SPECIAL_ROLES,
    WAR_ROLES,
    get_template,
    roles_for_sets,
)
from .utils.clan_tags import normalize_clan_tag

logger = get_logger()
audit_logger = get_audit_logger()


class WizardState(str, Enum):
    WELCOME = "welcome"
    CLAN_SELECTION = "clan_selection"
    STRUCTURE_TEMPLATE = "structure_template"
    ROLE_FAMILIES = "role_families"
    PERMISSION_POLICY = "permission_policy"
    FEATURES = "features"
    CONFIRMATION = "confirmation"
    COMPLETE = "complete"


# next/prev move within this range; COMPLETE is only reachable through confirm
STEP_ORDER = (
    WizardState.WELCOME,
    WizardState.CLAN_SELECTION,
    WizardState.STRUCTURE_TEMPLATE,
    WizardState.ROLE_FAMILIES,
    WizardState.PERMISSION_POLICY,
    WizardState.FEATURES,
    WizardState.CONFIRMATION,
)

STAGES = ("structure", "roles", "permissions", "features")

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"

STATUS_EMOJI = {
    STATUS_SUCCESS: "✅",
    STATUS_PARTIAL: "⚠️",
    STATUS_FAILED: "❌",
    STATUS_SKIPPED: "⏭️",
}

_PERMISSION_SUBJECT_ROLES = tuple(
    spec for spec in (*CLAN_POSITION_ROLES, *WAR_ROLES, *SPECIAL_ROLES) if spec.key in SUBJECT_KEYS
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Selections:
    """Choices accumulated across wizard steps."""
    clan: Optional[ClanChoice] = None
    template_key: str = DEFAULT_TEMPLATE_KEY
    role_sets: list[str] = field(
        default_factory=lambda: [key for key, rs in ROLE_SETS.items() if rs.default_selected]
    )
    policy: str = "standard"
    features: list[str] = field(default_factory=lambda: list(DEFAULT_FEATURES))


@dataclass
class StageReport:
    stage: str
    status: str
    created: int = 0
    skipped: int = 0
    errors: list[EntityError] = field(default_factory=list)
    detail: str = ""

    @property
    def affected(self) -> int:
        return self.created + self.skipped

    def describe(self) -> str:
        emoji = STATUS_EMOJI.get(self.status, "")
        text = f"{emoji} {self.status.title()}"
        if self.status != STATUS_SKIPPED:
            text += f": {self.created} created, {self.skipped} unchanged"
            if self.errors:
                text += f", {len(self.errors)} errors"
        if self.detail:
            text += f"\n{self.detail}"
        return text


@dataclass
class StageProgress:
    """Passed to the progress callback; ``report`` is ``None`` when a stage starts."""
    stage: str
    index: int
    total: int
    report: Optional[StageReport] = None


ProgressCallback = Callable[[StageProgress], Awaitable[None]]


@dataclass
class WizardSession:
    workspace_id: int
    owner_id: int
    state: WizardState = WizardState.WELCOME
    selections: Selections = field(default_factory=Selections)
    linked_clan: Optional[ClanLink] = None
    created_log: list[str] = field(default_factory=list)
    reports: list[StageReport] = field(default_factory=list)
    plan: Optional[dict[str, PlanSummary]] = None
    started_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    cancelled: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None

    @property
    def step_number(self) -> int:
        return STEP_ORDER.index(self.state) if self.state in STEP_ORDER else len(STEP_ORDER)


@dataclass(frozen=True)
class Control:
    """A button or toggle on a step. ``id`` is what the cog sends back."""
    id: str
    label: str
    style: str = "secondary"
    emoji: Optional[str] = None
    selected: bool = False
    disabled: bool = False


@dataclass(frozen=True)
class StepView:
    state: WizardState
    title: str
    description: str
    fields: tuple[tuple[str, str], ...] = ()
    controls: tuple[Control, ...] = ()
    color: int = 0x3498DB
    footer: Optional[str] = None


NEXT = "wizard:next"
PREV = "wizard:prev"
CANCEL = "wizard:cancel"
CONFIRM = "wizard:confirm"
ENTER_CLAN = "wizard:clan:enter"
USE_LINKED_CLAN = "wizard:clan:linked"
SKIP_CLAN = "wizard:clan:skip"
TOGGLE_PREFIX = "wizard:toggle:"
CHOOSE_PREFIX = "wizard:choose:"


class SessionRegistry:
    """In-memory wizard sessions keyed by guild id.

    Creation is compare-and-set: a live session started by someone else blocks
    a new one; the same user starting again replaces their own session.
    """

    def __init__(
        self,
        timeout_minutes: int = DEFAULT_SESSION_TIMEOUT_MINUTES,
        retention_minutes: int = DEFAULT_COMPLETED_RETENTION_MINUTES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.timeout = timedelta(minutes=timeout_minutes)
        self.retention = timedelta(minutes=retention_minutes)
        self.clock = clock
        self._sessions: dict[int, WizardSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, workspace_id: int) -> bool:
        return workspace_id in self._sessions

    def _is_expired(self, session: WizardSession, now: datetime) -> bool:
        if session.lock.locked():
            return False
        if session.finished_at is not None:
            return now - session.finished_at >= self.retention
        return now - session.last_activity >= self.timeout

    def create(self, workspace_id: int, user_id: int) -> WizardSession:
        now = self.clock()
        existing = self._sessions.get(workspace_id)
        if existing is not None and existing.lock.locked():
            raise SessionConflictError(workspace_id, existing.owner_id)
        if (
            existing is not None
            and existing.owner_id != user_id
            and not existing.is_finished
            and not self._is_expired(existing, now)
        ):
            raise SessionConflictError(workspace_id, existing.owner_id)

        session = WizardSession(
            workspace_id=workspace_id, owner_id=user_id, started_at=now, last_activity=now
        )
        self._sessions[workspace_id] = session
        return session

    def get(self, workspace_id: int) -> WizardSession:
        session = self._sessions.get(workspace_id)
        if session is None:
            raise NoActiveSessionError(workspace_id)
        if self._is_expired(session, self.clock()):
            del self._sessions[workspace_id]
            raise NoActiveSessionError(workspace_id)
        return session

    def require_owner(self, workspace_id: int, user_id: int) -> WizardSession:
        """Return the session if ``user_id`` owns it; refresh its idle timer."""
        session = self.get(workspace_id)
        if session.owner_id != user_id:
            raise SessionOwnershipError(workspace_id, session.owner_id, user_id)
        session.last_activity = self.clock()
        return session

    def finish(self, session: WizardSession) -> None:
        session.finished_at = self.clock()

    def discard(self, workspace_id: int, session: Optional[WizardSession] = None) -> Optional[WizardSession]:
        """Drop the session for ``workspace_id``; with ``session``, only if it is still the registered one."""
        if session is not None and self._sessions.get(workspace_id) is not session:
            return None
        return self._sessions.pop(workspace_id, None)

    def sweep(self) -> int:
        """Drop idle and retained-too-long sessions. Returns how many were dropped."""
        now = self.clock()
        expired = [wid for wid, s in self._sessions.items() if self._is_expired(s, now)]
        for workspace_id in expired:
            session = self._sessions.pop(workspace_id)
            logger.info(
                f"Discarded setup wizard session for guild {workspace_id} "
                f"({'completed' if session.is_finished else 'timed out'})"
            )
        return len(expired)


def _stage_status(succeeded: int, errors: int) -> str:
    if errors == 0:
        return STATUS_SUCCESS
    return STATUS_PARTIAL if succeeded else STATUS_FAILED


def _clip(text: str, limit: int = 1024) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


class WizardOrchestrator:
    """Drives sessions in a ``SessionRegistry`` through the setup steps."""

    def __init__(
        self,
        registry: SessionRegistry,
        pacing: PacingSettings,
        clan_store: Optional[Database] = None,
        summary_error_limit: int = DEFAULT_SUMMARY_ERROR_LIMIT,
    ) -> None:
        self.registry = registry
        self.pacing = pacing
        self.clan_store = clan_store
        self.summary_error_limit = summary_error_limit

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self, workspace_id: int, user_id: int) -> StepView:
        session = self.registry.create(workspace_id, user_id)
        if self.clan_store is not None:
            try:
                session.linked_clan = await self.clan_store.get_linked_clan(workspace_id)
            except Exception as e:
                logger.error(f"Failed to load linked clan for guild {workspace_id}: {e}")
        audit_logger.info(f"Setup wizard started in guild {workspace_id} by user {user_id}")
        return self.render(session)

    def _editable(self, workspace_id: int, user_id: int) -> WizardSession:
        session = self.registry.require_owner(workspace_id, user_id)
        if session.state == WizardState.COMPLETE:
            raise InvalidTransitionError("This setup wizard has already finished.")
        if session.lock.locked():
            raise InvalidTransitionError("Setup is currently being applied, please wait.")
        return session

    async def next(self, workspace_id: int, user_id: int, platform: PlatformClient) -> StepView:
        session = self._editable(workspace_id, user_id)
        index = STEP_ORDER.index(session.state)
        if index < len(STEP_ORDER) - 1:
            session.state = STEP_ORDER[index + 1]
            if session.state == WizardState.CONFIRMATION:
                session.plan = await self._plan(session, platform)
        return self.render(session)

    def prev(self, workspace_id: int, user_id: int) -> StepView:
        session = self._editable(workspace_id, user_id)
        index = STEP_ORDER.index(session.state)
        if index > 0:
            session.state = STEP_ORDER[index - 1]
        return self.render(session)

    def cancel(self, workspace_id: int, user_id: int) -> StepView:
        session = self.registry.require_owner(workspace_id, user_id)
        session.cancelled = True
        # a running confirm keeps the session registered and discards it when its stage ends
        if not session.lock.locked():
            self.registry.discard(workspace_id, session)
        audit_logger.info(f"Setup wizard cancelled in guild {workspace_id} by user {user_id}")
        return StepView(
            state=session.state,
            title="Setup Cancelled",
            description="The setup wizard has been cancelled. No further changes will be made.",
            color=0xE74C3C,
        )

    def toggle(self, workspace_id: int, user_id: int, option: str) -> StepView:
        """Flip a multi-select option on the current step and re-render it."""
        session = self._editable(workspace_id, user_id)
        selections = session.selections

        if session.state == WizardState.ROLE_FAMILIES:
            if option not in ROLE_SETS:
                raise InvalidSelectionError(f"Unknown role set: {option}")
            target = selections.role_sets
        elif session.state == WizardState.FEATURES:
            if option not in FEATURES:
                raise InvalidSelectionError(f"Unknown feature: {option}")
            target = selections.features
        else:
            raise InvalidTransitionError("Nothing can be toggled on this step.")

        if option in target:
            target.remove(option)
        else:
            target.append(option)
        return self.render(session)

    def choose(self, workspace_id: int, user_id: int, option: str) -> StepView:
        """Pick the single option of the template or permission step."""
        session = self._editable(workspace_id, user_id)

        if session.state == WizardState.STRUCTURE_TEMPLATE:
            if option not in SERVER_TEMPLATES:
                raise InvalidSelectionError(f"Unknown template: {option}")
            session.selections.template_key = option
        elif session.state == WizardState.PERMISSION_POLICY:
            if option not in POLICY_DESCRIPTIONS:
                raise InvalidSelectionError(f"Unknown permission policy: {option}")
            session.selections.policy = option
        else:
            raise InvalidTransitionError("Nothing can be chosen on this step.")
        return self.render(session)

    def select_clan(self, workspace_id: int, user_id: int, tag: str, name: Optional[str] = None) -> StepView:
        session = self._editable(workspace_id, user_id)
        if session.state != WizardState.CLAN_SELECTION:
            raise InvalidTransitionError("A clan can only be chosen on the clan selection step.")
        try:
            normalized = normalize_clan_tag(tag)
        except ValueError as e:
            raise InvalidSelectionError(str(e), actionable_suggestion="Check the tag in-game and try again.") from e
        session.selections.clan = ClanChoice(tag=normalized, name=(name or "").strip() or normalized)
        return self.render(session)

    def use_linked_clan(self, workspace_id: int, user_id: int) -> StepView:
        session = self._editable(workspace_id, user_id)
        if session.state != WizardState.CLAN_SELECTION:
            raise InvalidTransitionError("A clan can only be chosen on the clan selection step.")
        if session.linked_clan is None:
            raise InvalidSelectionError("This server has no linked clan yet.")
        link = session.linked_clan
        session.selections.clan = ClanChoice(tag=link.clan_tag, name=link.clan_name)
        return self.render(session)

    def skip_clan(self, workspace_id: int, user_id: int) -> StepView:
        session = self._editable(workspace_id, user_id)
        if session.state != WizardState.CLAN_SELECTION:
            raise InvalidTransitionError("A clan can only be chosen on the clan selection step.")
        session.selections.clan = None
        session.state = WizardState.STRUCTURE_TEMPLATE
        return self.render(session)

    async def confirm(
        self,
        workspace_id: int,
        user_id: int,
        platform: PlatformClient,
        progress: Optional[ProgressCallback] = None,
    ) -> StepView:
        """Apply every selection: structure, roles, permissions, then features."""
        session = self._editable(workspace_id, user_id)
        if session.state != WizardState.CONFIRMATION:
            raise InvalidTransitionError("Setup can only be applied from the confirmation step.")

        async with session.lock:
            audit_logger.info(
                f"Setup confirmed in guild {workspace_id} by user {user_id}: "
                f"template={session.selections.template_key} roles={session.selections.role_sets} "
                f"policy={session.selections.policy} features={session.selections.features}"
            )
            try:
                await self._run_stages(session, platform, progress)
                session.state = WizardState.COMPLETE
            finally:
                if session.cancelled:
                    self.registry.discard(workspace_id, session)
                else:
                    self.registry.finish(session)

        await self._record_run(session)
        return self.render(session)

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    async def _plan(self, session: WizardSession, platform: PlatformClient) -> Optional[dict[str, PlanSummary]]:
        selections = session.selections
        try:
            return {
                "structure": await plan_structure(get_template(selections.template_key), platform),
                "roles": await plan_roles(roles_for_sets(selections.role_sets), platform),
            }
        except Exception as e:
            logger.error(f"Failed to compute setup plan for guild {session.workspace_id}: {e}")
            return None

    async def _run_stages(
        self, session: WizardSession, platform: PlatformClient, progress: Optional[ProgressCallback]
    ) -> None:
        pacer = MutationPacer(self.pacing)
        channel_ids: set[int] = set()
        role_ids: dict[str, int] = {}
        selections = session.selections

        async def structure() -> StageReport:
            result = await reconcile_structure(get_template(selections.template_key), platform, pacer)
            channel_ids.update(result.ids.values())
            session.created_log.extend(f"structure:{name}" for name in result.created)
            detail = f"{len(result.unresolved)} channels skipped, their category is missing" if result.unresolved else ""
            return StageReport(
                "structure",
                _stage_status(result.created_count + result.skipped_count, len(result.errors)),
                result.created_count,
                result.skipped_count,
                result.errors,
                detail,
            )

        async def roles() -> StageReport:
            specs = roles_for_sets(selections.role_sets)
            if not specs:
                return StageReport("roles", STATUS_SKIPPED, detail="No role sets selected")
            result = await reconcile_roles(specs, platform, pacer)
            role_ids.update(result.ids)
            session.created_log.extend(f"role:{name}" for name in result.created)
            return StageReport(
                "roles",
                _stage_status(result.created_count + result.skipped_count, len(result.errors)),
                result.created_count,
                result.skipped_count,
                result.errors,
            )

        async def permissions() -> StageReport:
            if selections.policy == CUSTOM_POLICY:
                return StageReport("permissions", STATUS_SKIPPED, detail="Custom permissions selected")
            if not channel_ids:
                return StageReport("permissions", STATUS_SKIPPED, detail="No channels to configure")

            subjects = await resolve_role_ids(_PERMISSION_SUBJECT_ROLES, platform)
            subjects.update({k: v for k, v in role_ids.items() if k in SUBJECT_KEYS})
            live = [*await platform.list_categories(), *await platform.list_channels()]
            targets = [c for c in live if c.id in channel_ids]
            result = await apply(selections.policy, targets, subjects, platform, pacer)
            return StageReport(
                "permissions",
                _stage_status(result.edited, len(result.errors)),
                result.edited,
                len(result.skipped),
                result.errors,
            )

        async def features() -> StageReport:
            if not selections.features:
                return StageReport("features", STATUS_SKIPPED, detail="No features selected")
            result = await configure_features(
                selections.features, platform, self.clan_store, selections.clan
            )
            detail = "\n".join(f"• {line}" for line in result.skipped)
            if not result.configured and not result.errors:
                return StageReport("features", STATUS_SKIPPED, skipped=len(result.skipped), detail=detail)
            return StageReport(
                "features",
                _stage_status(len(result.configured), len(result.errors)),
                len(result.configured),
                len(result.skipped),
                result.errors,
                detail,
            )

        runners = {"structure": structure, "roles": roles, "permissions": permissions, "features": features}
        total = len(STAGES)
        for index, stage in enumerate(STAGES, start=1):
            if session.cancelled:
                report = StageReport(stage, STATUS_SKIPPED, detail="Setup was cancelled")
            else:
                if progress is not None:
                    await self._notify(progress, StageProgress(stage, index, total))
                try:
                    report = await runners[stage]()
                except Exception as e:
                    logger.exception(f"Setup stage '{stage}' failed in guild {session.workspace_id}: {e}")
                    report = StageReport(
                        stage,
                        STATUS_FAILED,
                        errors=[EntityError("stage", stage, "run", describe_exception(e))],
                    )
            session.reports.append(report)
            logger.info(f"Setup stage '{stage}' in guild {session.workspace_id}: {report.status}")
            if progress is not None:
                await self._notify(progress, StageProgress(stage, index, total, report))

    @staticmethod
    async def _notify(progress: ProgressCallback, update: StageProgress) -> None:
        try:
            await progress(update)
        except Exception as e:
            logger.warning(f"Setup progress callback failed: {e}")

    async def _record_run(self, session: WizardSession) -> None:
        if self.clan_store is None:
            return
        summary = {
            report.stage: {
                "status": report.status,
                "created": report.created,
                "skipped": report.skipped,
                "errors": len(report.errors),
            }
            for report in session.reports
        }
        try:
            await self.clan_store.record_setup_run(
                session.workspace_id, session.owner_id, session.selections.template_key, summary
            )
        except Exception as e:
            logger.error(f"Failed to record setup run for guild {session.workspace_id}: {e}")

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, session: WizardSession) -> StepView:
        renderer = {
            WizardState.WELCOME: self._render_welcome,
            WizardState.CLAN_SELECTION: self._render_clan_selection,
            WizardState.STRUCTURE_TEMPLATE: self._render_structure,
            WizardState.ROLE_FAMILIES: self._render_roles,
            WizardState.PERMISSION_POLICY: self._render_permissions,
            WizardState.FEATURES: self._render_features,
            WizardState.CONFIRMATION: self._render_confirmation,
            WizardState.COMPLETE: self._render_complete,
        }[session.state]
        return renderer(session)

    @staticmethod
    def _navigation(session: WizardSession, *, next_label: str = "Next") -> tuple[Control, ...]:
        return (
            Control(PREV, "Back", emoji="⬅️", disabled=session.state == STEP_ORDER[0]),
            Control(NEXT, next_label, style="primary", emoji="➡️"),
            Control(CANCEL, "Cancel", style="danger", emoji="❌"),
        )

    @staticmethod
    def _footer(session: WizardSession) -> str:
        return f"Step {session.step_number + 1} of {len(STEP_ORDER)}"

    def _render_welcome(self, session: WizardSession) -> StepView:
        return StepView(
            state=session.state,
            title="🏗️ Discord Server Setup Wizard",
            description=(
                "Welcome to the Clash of Clans Discord Server Setup Wizard! This wizard will guide "
                "you through setting up your server with all the categories, channels, and roles "
                "needed for a well-organized clan."
            ),
            fields=(
                (
                    "📝 What will be set up?",
                    "• Server categories and channels\n• Roles based on clan positions\n"
                    "• Permissions for channels and roles\n• Integrations with your Clash of Clans clan",
                ),
                (
                    "⚠️ Important Notes",
                    "• Nothing is deleted or renamed, only missing pieces are created\n"
                    "• Changes are only applied after the final confirmation\n"
                    "• You can cancel anytime during the process",
                ),
            ),
            controls=self._navigation(session, next_label="Start Setup"),
            color=0xF1C40F,
            footer=self._footer(session),
        )

    def _render_clan_selection(self, session: WizardSession) -> StepView:
        chosen = session.selections.clan
        linked = session.linked_clan
        if linked is not None:
            description = (
                f"Your server is currently linked to the clan: **{linked.clan_name}** ({linked.clan_tag})\n\n"
                "Would you like to use this clan for the setup?"
            )
        else:
            description = (
                "No clan is linked to this server yet. Enter your clan tag to link it, "
                "or skip this step to set up the server without clan features."
            )

        controls = []
        if linked is not None:
            controls.append(
                Control(
                    USE_LINKED_CLAN,
                    "Use Linked Clan",
                    style="primary",
                    selected=chosen is not None and chosen.tag == linked.clan_tag,
                )
            )
        controls.append(Control(ENTER_CLAN, "Enter Clan Tag", emoji="🏷️"))
        controls.append(Control(SKIP_CLAN, "Skip"))

        fields = ()
        if chosen is not None:
            fields = (("Selected Clan", f"**{chosen.name}** ({chosen.tag})"),)
        return StepView(
            state=session.state,
            title="Step 1: Clan Selection",
            description=description,
            fields=fields,
            controls=(*controls, *self._navigation(session)),
            footer=self._footer(session),
        )

    def _render_structure(self, session: WizardSession) -> StepView:
        selected = session.selections.template_key
        fields = tuple(
            (
                f"{'✅ ' if key == selected else ''}{template.name}",
                f"{template.description}\n{len(template.categories)} categories, {template.channel_count} channels",
            )
            for key, template in SERVER_TEMPLATES.items()
        )
        controls = tuple(
            Control(f"{CHOOSE_PREFIX}{key}", template.name, selected=key == selected,
                    style="success" if key == selected else "secondary")
            for key, template in SERVER_TEMPLATES.items()
        )
        return StepView(
            state=session.state,
            title="Step 2: Server Structure",
            description="Choose a template for your server's categories and channels:",
            fields=fields,
            controls=(*controls, *self._navigation(session)),
            footer=self._footer(session),
        )

    def _render_roles(self, session: WizardSession) -> StepView:
        selected = session.selections.role_sets
        fields = tuple(
            (f"{'✅' if key in selected else '⬜'} {role_set.name}", role_set.description)
            for key, role_set in ROLE_SETS.items()
        )
        controls = tuple(
            Control(
                f"{TOGGLE_PREFIX}{key}",
                role_set.name,
                emoji="✅" if key in selected else "⬜",
                selected=key in selected,
                style="success" if key in selected else "secondary",
            )
            for key, role_set in ROLE_SETS.items()
        )
        return StepView(
            state=session.state,
            title="Step 3: Role Setup",
            description="Select which role families to create. Existing roles with the same name are reused.",
            fields=fields,
            controls=(*controls, *self._navigation(session)),
            footer=self._footer(session),
        )

    def _render_permissions(self, session: WizardSession) -> StepView:
        selected = session.selections.policy
        names = {"standard": "Standard", "strict": "Strict", "open": "Open", CUSTOM_POLICY: "Custom"}
        fields = tuple(
            (f"{'✅ ' if key == selected else ''}{names[key]}", POLICY_DESCRIPTIONS[key])
            for key in (*POLICIES, CUSTOM_POLICY)
        )
        controls = tuple(
            Control(f"{CHOOSE_PREFIX}{key}", names[key], selected=key == selected,
                    style="success" if key == selected else "secondary")
            for key in (*POLICIES, CUSTOM_POLICY)
        )
        return StepView(
            state=session.state,
            title="Step 4: Permission Setup",
            description="Choose how channel permissions should be configured:",
            fields=fields,
            controls=(*controls, *self._navigation(session)),
            footer=self._footer(session),
        )

    def _render_features(self, session: WizardSession) -> StepView:
        selected = session.selections.features
        fields = tuple(
            (f"{'✅' if key in selected else '⬜'} {option.name}", option.description)
            for key, option in FEATURES.items()
        )
        controls = tuple(
            Control(
                f"{TOGGLE_PREFIX}{key}",
                option.name,
                emoji="✅" if key in selected else "⬜",
                selected=key in selected,
                style="success" if key in selected else "secondary",
            )
            for key, option in FEATURES.items()
        )
        return StepView(
            state=session.state,
            title="Step 5: Feature Selection",
            description="Select which features you want to enable for your server:",
            fields=fields,
            controls=(*controls, *self._navigation(session, next_label="Review")),
            footer=self._footer(session),
        )

    def _render_confirmation(self, session: WizardSession) -> StepView:
        selections = session.selections
        template = SERVER_TEMPLATES[selections.template_key]
        role_names = ", ".join(ROLE_SETS[key].name for key in selections.role_sets) or "None"
        feature_names = ", ".join(FEATURES[key].name for key in selections.features) or "None"
        clan = f"{selections.clan.name} ({selections.clan.tag})" if selections.clan else "None"

        if session.plan is None:
            changes = "Could not inspect the server; counts will be reported after setup."
        else:
            structure, roles = session.plan["structure"], session.plan["roles"]
            changes = (
                f"**Channels & categories:** {structure.create} to create, {structure.existing} already exist\n"
                f"**Roles:** {roles.create} to create, {roles.existing} already exist"
            )

        return StepView(
            state=session.state,
            title="Step 6: Confirm Setup",
            description="Please review your selections. Nothing has been changed yet.",
            fields=(
                ("Clan", clan),
                ("Server Template", template.name),
                ("Roles", role_names),
                ("Permissions", selections.policy.title()),
                ("Features Enabled", feature_names),
                ("Planned Changes", changes),
            ),
            controls=(
                Control(PREV, "Back", emoji="⬅️"),
                Control(CONFIRM, "Apply Setup", style="success", emoji="✅"),
                Control(CANCEL, "Cancel", style="danger", emoji="❌"),
            ),
            color=0xE67E22,
            footer=self._footer(session),
        )

    def _render_complete(self, session: WizardSession) -> StepView:
        errors = [error for report in session.reports for error in report.errors]
        fields = [(report.stage.title(), _clip(report.describe())) for report in session.reports]
        if errors:
            fields.append(("Outstanding Errors", _clip(summarize_errors(errors, self.summary_error_limit))))

        failed = any(r.status == STATUS_FAILED for r in session.reports)
        partial = any(r.status == STATUS_PARTIAL for r in session.reports)
        if failed or partial:
            title = "⚠️ Setup Finished With Errors"
            color = 0xE67E22
        else:
            title = "✅ Setup Complete!"
            color = 0x2ECC71

        return StepView(
            state=session.state,
            title=title,
            description=f"Created {len(session.created_log)} new roles, categories and channels.",
            fields=tuple(fields),
            color=color,
        )

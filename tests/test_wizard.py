import pytest

from clanhall_core.errors import (
    InvalidSelectionError,
    InvalidTransitionError,
    NoActiveSessionError,
    SessionConflictError,
    SessionOwnershipError,
)
from clanhall_core.rate_limiter import PacingSettings
from clanhall_core.wizard import (
    CHOOSE_PREFIX,
    CONFIRM,
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    SessionRegistry,
    WizardOrchestrator,
    WizardState,
)

GUILD = 4242
OWNER = 1
OTHER = 2


@pytest.fixture
def registry(clock) -> SessionRegistry:
    return SessionRegistry(timeout_minutes=30, retention_minutes=5, clock=clock)


@pytest.fixture
def wizard(registry, db) -> WizardOrchestrator:
    return WizardOrchestrator(
        registry, PacingSettings(create_delay=0.0, overwrite_delay=0.0), clan_store=db
    )


@pytest.fixture
def guild(make_platform):
    return make_platform(workspace_id=GUILD)


async def _advance_to(wizard, state, platform):
    step = wizard.render(wizard.registry.get(GUILD))
    while step.state != state:
        step = await wizard.next(GUILD, OWNER, platform)
    return step


@pytest.mark.asyncio
async def test_start_renders_welcome(wizard):
    step = await wizard.start(GUILD, OWNER)

    assert step.state == WizardState.WELCOME
    assert step.footer == "Step 1 of 7"
    assert any(control.label == "Start Setup" for control in step.controls)


@pytest.mark.asyncio
async def test_second_admin_cannot_start_while_session_is_live(wizard, clock):
    await wizard.start(GUILD, OWNER)

    with pytest.raises(SessionConflictError):
        await wizard.start(GUILD, OTHER)

    clock.advance(minutes=31)
    step = await wizard.start(GUILD, OTHER)
    assert step.state == WizardState.WELCOME
    assert wizard.registry.get(GUILD).owner_id == OTHER


@pytest.mark.asyncio
async def test_owner_restart_replaces_session(wizard, guild):
    await wizard.start(GUILD, OWNER)
    await wizard.next(GUILD, OWNER, guild)

    step = await wizard.start(GUILD, OWNER)

    assert step.state == WizardState.WELCOME


@pytest.mark.asyncio
async def test_only_owner_can_drive_the_session(wizard, guild):
    await wizard.start(GUILD, OWNER)

    with pytest.raises(SessionOwnershipError):
        await wizard.next(GUILD, OTHER, guild)
    with pytest.raises(SessionOwnershipError):
        wizard.cancel(GUILD, OTHER)

    assert wizard.registry.get(GUILD).state == WizardState.WELCOME


@pytest.mark.asyncio
async def test_prev_and_next_stay_in_bounds(wizard, guild):
    await wizard.start(GUILD, OWNER)

    assert wizard.prev(GUILD, OWNER).state == WizardState.WELCOME
    step = await _advance_to(wizard, WizardState.CONFIRMATION, guild)
    assert step.state == WizardState.CONFIRMATION
    assert (await wizard.next(GUILD, OWNER, guild)).state == WizardState.CONFIRMATION
    assert wizard.prev(GUILD, OWNER).state == WizardState.FEATURES


@pytest.mark.asyncio
async def test_confirmation_shows_planned_changes(wizard, guild):
    guild.add_role("Leader")
    await wizard.start(GUILD, OWNER)

    step = await _advance_to(wizard, WizardState.CONFIRMATION, guild)

    changes = dict(step.fields)["Planned Changes"]
    assert "17 to create" in changes
    assert "12 to create, 1 already exist" in changes
    assert any(control.id == CONFIRM for control in step.controls)
    assert guild.calls == []


@pytest.mark.asyncio
async def test_selections_are_validated_per_step(wizard, guild):
    await wizard.start(GUILD, OWNER)

    with pytest.raises(InvalidTransitionError):
        wizard.toggle(GUILD, OWNER, "war_roles")
    with pytest.raises(InvalidTransitionError):
        await wizard.confirm(GUILD, OWNER, guild)

    await _advance_to(wizard, WizardState.STRUCTURE_TEMPLATE, guild)
    with pytest.raises(InvalidSelectionError):
        wizard.choose(GUILD, OWNER, "missing")
    step = wizard.choose(GUILD, OWNER, "competitive")
    assert any(c.id == f"{CHOOSE_PREFIX}competitive" and c.selected for c in step.controls)

    await _advance_to(wizard, WizardState.ROLE_FAMILIES, guild)
    with pytest.raises(InvalidSelectionError):
        wizard.toggle(GUILD, OWNER, "missing")
    wizard.toggle(GUILD, OWNER, "war_roles")
    wizard.toggle(GUILD, OWNER, "th_roles")

    selections = wizard.registry.get(GUILD).selections
    assert selections.template_key == "competitive"
    assert selections.role_sets == ["clan_roles", "war_roles"]


@pytest.mark.asyncio
async def test_clan_tag_is_normalized(wizard, guild):
    await wizard.start(GUILD, OWNER)
    await _advance_to(wizard, WizardState.CLAN_SELECTION, guild)

    with pytest.raises(InvalidSelectionError):
        wizard.select_clan(GUILD, OWNER, "#ABC")
    with pytest.raises(InvalidSelectionError):
        wizard.use_linked_clan(GUILD, OWNER)

    step = wizard.select_clan(GUILD, OWNER, "2pp", "  ")
    assert dict(step.fields)["Selected Clan"] == "**#2PP** (#2PP)"

    step = wizard.skip_clan(GUILD, OWNER)
    assert step.state == WizardState.STRUCTURE_TEMPLATE
    assert wizard.registry.get(GUILD).selections.clan is None


@pytest.mark.asyncio
async def test_linked_clan_is_offered(wizard, db, guild):
    await db.link_clan(GUILD, "#2PP", "Clan Hall Heroes")
    await wizard.start(GUILD, OWNER)
    await _advance_to(wizard, WizardState.CLAN_SELECTION, guild)

    step = wizard.use_linked_clan(GUILD, OWNER)

    assert "Clan Hall Heroes" in step.description
    assert wizard.registry.get(GUILD).selections.clan.tag == "#2PP"


@pytest.mark.asyncio
async def test_cancel_discards_the_session(wizard, guild):
    await wizard.start(GUILD, OWNER)

    step = wizard.cancel(GUILD, OWNER)

    assert step.title == "Setup Cancelled"
    assert GUILD not in wizard.registry
    with pytest.raises(NoActiveSessionError):
        await wizard.next(GUILD, OWNER, guild)
    assert guild.calls == []


@pytest.mark.asyncio
async def test_cancel_during_confirm_finishes_running_stage_and_blocks_new_sessions(wizard, guild):
    attempts = []

    async def progress(update):
        if update.stage == "structure" and update.report is None:
            wizard.cancel(GUILD, OWNER)
            for user_id in (OTHER, OWNER):
                try:
                    await wizard.start(GUILD, user_id)
                except SessionConflictError:
                    attempts.append("blocked")
                else:
                    attempts.append("started")

    await wizard.start(GUILD, OWNER)
    await _advance_to(wizard, WizardState.CONFIRMATION, guild)
    session = wizard.registry.get(GUILD)

    await wizard.confirm(GUILD, OWNER, guild, progress=progress)

    reports = {report.stage: report for report in session.reports}
    assert attempts == ["blocked", "blocked"]
    assert reports["structure"].created == 17
    for stage in ("roles", "permissions", "features"):
        assert reports[stage].status == STATUS_SKIPPED
        assert reports[stage].detail == "Setup was cancelled"
    assert guild.mutations("create_role") == []
    assert GUILD not in wizard.registry

    step = await wizard.start(GUILD, OTHER)
    assert step.state == WizardState.WELCOME


@pytest.mark.asyncio
async def test_confirm_runs_every_stage(wizard, db, guild):
    updates = []

    async def progress(update):
        updates.append((update.stage, update.report.status if update.report else None))

    await wizard.start(GUILD, OWNER)
    await _advance_to(wizard, WizardState.CLAN_SELECTION, guild)
    wizard.select_clan(GUILD, OWNER, "#2PP", "Clan Hall Heroes")
    await _advance_to(wizard, WizardState.CONFIRMATION, guild)

    step = await wizard.confirm(GUILD, OWNER, guild, progress=progress)

    assert step.state == WizardState.COMPLETE
    assert step.title == "✅ Setup Complete!"
    session = wizard.registry.get(GUILD)
    reports = {report.stage: report for report in session.reports}
    assert [report.stage for report in session.reports] == ["structure", "roles", "permissions", "features"]
    assert reports["structure"].created == 17
    assert reports["roles"].created == 13
    assert reports["permissions"].status == STATUS_SUCCESS
    assert reports["permissions"].created > 0
    assert reports["features"].status == STATUS_SUCCESS
    assert len(updates) == 8
    assert updates[0] == ("structure", None)
    assert updates[1] == ("structure", STATUS_SUCCESS)

    link = await db.get_linked_clan(GUILD)
    assert link.clan_tag == "#2PP"
    assert link.notifications["warStart"] is True
    assert link.settings["autoRoles"] is True
    assert len(guild.messages) == 1
    runs = await db.get_setup_runs(GUILD)
    assert runs[0]["summary"]["structure"]["created"] == 17

    with pytest.raises(InvalidTransitionError):
        await wizard.confirm(GUILD, OWNER, guild)


@pytest.mark.asyncio
async def test_stage_failure_does_not_stop_later_stages(wizard, guild):
    async def broken():
        raise RuntimeError("listing failed")

    guild.list_categories = broken

    async def failing_progress(update):
        raise RuntimeError("message deleted")

    await wizard.start(GUILD, OWNER)
    await _advance_to(wizard, WizardState.CONFIRMATION, guild)
    step = await wizard.confirm(GUILD, OWNER, guild, progress=failing_progress)

    reports = {report.stage: report for report in wizard.registry.get(GUILD).reports}
    assert reports["structure"].status == STATUS_FAILED
    assert reports["structure"].errors[0].kind == "stage"
    assert reports["roles"].status == STATUS_SUCCESS
    assert reports["permissions"].status == STATUS_SKIPPED
    assert step.title == "⚠️ Setup Finished With Errors"
    assert "Outstanding Errors" in dict(step.fields)


@pytest.mark.asyncio
async def test_second_run_creates_nothing(wizard, guild):
    for _ in range(2):
        await wizard.start(GUILD, OWNER)
        await _advance_to(wizard, WizardState.CONFIRMATION, guild)
        await wizard.confirm(GUILD, OWNER, guild)

    reports = {report.stage: report for report in wizard.registry.get(GUILD).reports}
    assert reports["structure"].created == 0
    assert reports["structure"].skipped == 17
    assert reports["roles"].created == 0


@pytest.mark.asyncio
async def test_finished_session_is_retained_then_swept(wizard, registry, clock, guild):
    await wizard.start(GUILD, OWNER)
    await _advance_to(wizard, WizardState.CONFIRMATION, guild)
    await wizard.confirm(GUILD, OWNER, guild)

    clock.advance(minutes=4)
    assert registry.sweep() == 0
    assert registry.get(GUILD).state == WizardState.COMPLETE

    await wizard.start(GUILD, OTHER)
    clock.advance(minutes=31)
    assert registry.sweep() == 1
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_activity_refreshes_idle_timer(wizard, clock, guild):
    await wizard.start(GUILD, OWNER)

    clock.advance(minutes=20)
    await wizard.next(GUILD, OWNER, guild)
    clock.advance(minutes=20)

    assert wizard.registry.get(GUILD).state == WizardState.CLAN_SELECTION

import pytest

from clanhall_core.reconciler import (
    PlanSummary,
    channel_key,
    normalize_name,
    plan_roles,
    plan_structure,
    reconcile_roles,
    reconcile_structure,
    resolve_role_ids,
)
from clanhall_core.templates import CLAN_POSITION_ROLES, get_template, roles_for_sets


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("📢 CLAN HALL", "clan hall"),
        ("clan-hall", "clan hall"),
        ("⚔️ WAR ROOM", "war room"),
        ("war_planning", "war planning"),
        ("  General  ", "general"),
    ],
)
def test_normalize_name(raw, expected):
    assert normalize_name(raw) == expected


@pytest.mark.asyncio
async def test_empty_guild_gets_every_entity(platform, pacer):
    template = get_template("standard")

    result = await reconcile_structure(template, platform, pacer)

    assert result.created_count == 17
    assert result.skipped_count == 0
    assert result.errors == []
    assert len(platform.categories) == 3
    assert len(platform.channels) == 14
    assert result.ids[channel_key("💬 GENERAL", "general")] in platform.channels
    assert pacer.mutations == 17


@pytest.mark.asyncio
async def test_second_run_is_idempotent(platform, pacer):
    template = get_template("standard")
    await reconcile_structure(template, platform, pacer)
    calls_before = len(platform.calls)

    result = await reconcile_structure(template, platform, pacer)

    assert result.created_count == 0
    assert result.skipped_count == 17
    assert len(platform.calls) == calls_before


@pytest.mark.asyncio
async def test_categories_are_created_before_their_channels(platform, pacer):
    await reconcile_structure(get_template("competitive"), platform, pacer)

    seen_categories = set()
    for call in platform.calls:
        if call[0] == "create_category":
            seen_categories.update(c.id for c in platform.categories.values() if c.name == call[1])
        elif call[0] == "create_channel":
            assert call[2] in seen_categories


@pytest.mark.asyncio
async def test_decorated_names_match_existing_entities(platform, pacer):
    hall = platform.add_category("clan-hall")
    platform.add_channel("Welcome", hall.id)

    result = await reconcile_structure(get_template("standard"), platform, pacer)

    assert "📢 CLAN HALL" in result.skipped
    assert channel_key("📢 CLAN HALL", "welcome") in result.skipped
    assert result.ids["📢 CLAN HALL"] == hall.id
    assert result.created_count == 15


@pytest.mark.asyncio
async def test_channel_match_is_scoped_to_its_category(platform, pacer):
    other = platform.add_category("Off Topic")
    stray = platform.add_channel("general", other.id)

    result = await reconcile_structure(get_template("standard"), platform, pacer)

    created_general = result.ids[channel_key("💬 GENERAL", "general")]
    assert created_general != stray.id
    assert platform.channels[created_general].parent_id != other.id


@pytest.mark.asyncio
async def test_one_failed_channel_does_not_abort_the_run(platform, pacer):
    platform.fail_on.add("create_channel:rules")

    result = await reconcile_structure(get_template("standard"), platform, pacer)

    assert result.created_count == 16
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.kind == "channel"
    assert error.entity == channel_key("📢 CLAN HALL", "rules")
    assert "RuntimeError" in error.message


@pytest.mark.asyncio
async def test_channels_of_failed_category_are_unresolved(platform, pacer):
    platform.fail_on.add("create_category:⚔️ WAR ROOM")

    result = await reconcile_structure(get_template("standard"), platform, pacer)

    assert len(result.errors) == 1
    assert len(result.unresolved) == 5
    assert all(key.startswith("⚔️ WAR ROOM/") for key in result.unresolved)
    assert not any(call[0] == "create_channel" and call[2] is None for call in platform.calls)


@pytest.mark.asyncio
async def test_roles_are_reused_by_alias(platform, pacer):
    existing = platform.add_role("CoC Leader")

    result = await reconcile_roles(CLAN_POSITION_ROLES, platform, pacer)

    assert result.ids["leader"] == existing.id
    assert result.skipped == ["Leader"]
    assert result.created == ["Co-Leader", "Elder", "Member"]
    assert set(result.ids) == {"leader", "co_leader", "elder", "member"}


@pytest.mark.asyncio
async def test_role_failure_is_recorded(platform, pacer):
    platform.fail_on.add("create_role:Elder")

    result = await reconcile_roles(CLAN_POSITION_ROLES, platform, pacer)

    assert result.created_count == 3
    assert "elder" not in result.ids
    assert result.errors[0].entity == "Elder"


@pytest.mark.asyncio
async def test_plans_do_not_mutate(platform):
    platform.add_category("GENERAL")
    platform.add_role("Member")

    structure = await plan_structure(get_template("standard"), platform)
    roles = await plan_roles(roles_for_sets(["clan_roles"]), platform)

    assert structure == PlanSummary(create=16, existing=1)
    assert roles == PlanSummary(create=3, existing=1)
    assert structure + roles == PlanSummary(create=19, existing=2)
    assert platform.calls == []


@pytest.mark.asyncio
async def test_resolve_role_ids_only_returns_live_matches(platform):
    elder = platform.add_role("elder")

    ids = await resolve_role_ids(CLAN_POSITION_ROLES, platform)

    assert ids == {"elder": elder.id}

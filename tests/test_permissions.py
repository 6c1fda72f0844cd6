import discord
import pytest

from clanhall_core.errors import UnknownPolicyError
from clanhall_core.permissions import (
    CUSTOM_POLICY,
    EVERYONE,
    POLICIES,
    Patch,
    apply,
    desired_overwrites,
)


def _allows(patch: Patch, flag: str) -> bool:
    return getattr(discord.Permissions(patch.allow), flag)


def _denies(patch: Patch, flag: str) -> bool:
    return getattr(discord.Permissions(patch.deny), flag)


def test_patch_of_splits_allow_and_deny():
    patch = Patch.of(view_channel=True, send_messages=False)

    assert _allows(patch, "view_channel")
    assert _denies(patch, "send_messages")
    assert not _allows(patch, "send_messages")


def test_later_patch_wins_only_on_bits_it_sets():
    base = Patch.of(view_channel=True, send_messages=True, attach_files=True)
    merged = Patch.of(send_messages=False).over(base)

    assert _allows(merged, "view_channel")
    assert _allows(merged, "attach_files")
    assert _denies(merged, "send_messages")
    assert not _allows(merged, "send_messages")
    assert merged.allow & merged.deny == 0


def test_categories_only_get_the_base_policy():
    assert desired_overwrites("standard", "📢 ANNOUNCEMENTS", True) == dict(POLICIES["standard"])


def test_announcement_channel_is_read_only_for_members():
    grants = desired_overwrites("standard", "announcements", False)

    everyone = grants[EVERYONE]
    assert _allows(everyone, "view_channel")
    assert _denies(everyone, "send_messages")

    member = grants["member"]
    assert _denies(member, "send_messages")
    assert _allows(member, "add_reactions")
    assert _allows(member, "attach_files")

    assert _allows(grants["co_leader"], "manage_messages")


def test_war_planning_hides_from_members_and_opens_for_war_team():
    grants = desired_overwrites("standard", "war-planning", False)

    assert _denies(grants["member"], "view_channel")
    assert not _allows(grants["member"], "view_channel")
    assert _allows(grants["war_team"], "send_messages")
    assert _allows(grants["elder"], "view_channel")


def test_bot_commands_adds_bot_admin_subject():
    grants = desired_overwrites("strict", "bot-commands", False)

    assert _allows(grants["bot_admin"], "manage_messages")
    assert _allows(grants[EVERYONE], "view_channel")


def test_admin_channel_hidden_from_elders():
    grants = desired_overwrites("open", "leader-chat", False)

    assert _denies(grants["elder"], "view_channel")
    assert _denies(grants["member"], "view_channel")
    assert _allows(grants["co_leader"], "view_channel")


def test_unknown_policy_raises():
    with pytest.raises(UnknownPolicyError):
        desired_overwrites("chaos", "general", False)


@pytest.mark.asyncio
async def test_apply_skips_subjects_without_a_role(platform, pacer):
    category = platform.add_category("GENERAL")
    general = platform.add_channel("general", category.id)
    leader = platform.add_role("Leader")
    member = platform.add_role("Member")
    roles = {"leader": leader.id, "member": member.id}

    result = await apply(
        "standard", [platform.categories[category.id], general], roles, platform, pacer
    )

    assert result.edited == 6
    assert sorted(result.skipped) == [
        "GENERAL:co_leader",
        "GENERAL:elder",
        "general:co_leader",
        "general:elder",
    ]
    assert result.errors == []
    overwrites = platform.overwrites_for(general.id)
    assert set(overwrites) == {platform.everyone_id, leader.id, member.id}
    assert pacer.mutations == 6


@pytest.mark.asyncio
async def test_apply_records_failed_edits(platform, pacer):
    general = platform.add_channel("general")

    result = await apply("standard", [general], {"leader": 4242}, platform, pacer)

    assert result.edited == 1
    assert len(result.errors) == 1
    assert result.errors[0].entity == "general:leader"


@pytest.mark.asyncio
async def test_custom_policy_changes_nothing(platform, pacer):
    general = platform.add_channel("general")

    result = await apply(CUSTOM_POLICY, [general], {}, platform, pacer)

    assert result.edited == 0
    assert platform.calls == []

import pytest

from clanhall_core.errors import UnknownTemplateError
from clanhall_core.templates import (
    CLAN_POSITION_ROLES,
    DEFAULT_TEMPLATE_KEY,
    ROLE_SETS,
    SERVER_TEMPLATES,
    get_role_set,
    get_template,
    roles_for_sets,
    town_hall_role,
)


def test_standard_template_shape():
    template = get_template("standard")

    assert len(template.categories) == 3
    assert template.channel_count == 14
    assert template.entity_count == 17
    assert DEFAULT_TEMPLATE_KEY in SERVER_TEMPLATES


def test_every_template_has_unique_channel_names_per_category():
    for template in SERVER_TEMPLATES.values():
        category_names = [category.name for category in template.categories]
        assert len(category_names) == len(set(category_names))
        for category in template.categories:
            names = [channel.name for channel in category.channels]
            assert len(names) == len(set(names)), f"{template.key}/{category.name}"


def test_unknown_template_raises_with_suggestion():
    with pytest.raises(UnknownTemplateError) as excinfo:
        get_template("missing")

    assert excinfo.value.template_key == "missing"
    assert "standard" in excinfo.value.actionable_suggestion


def test_town_hall_roles_cover_supported_levels():
    role = town_hall_role(12)
    assert role.key == "th12"
    assert role.name == "TH12"
    assert role.family == "tier"
    assert role.level == 12
    assert role.color_value == 0xC0392B

    with pytest.raises(ValueError):
        town_hall_role(3)


def test_clan_position_roles_are_hoisted_with_aliases():
    leader = CLAN_POSITION_ROLES[0]
    assert leader.key == "leader"
    assert leader.hoist is True
    assert "CoC Leader" in leader.aliases


def test_roles_for_sets_keeps_catalog_order():
    specs = roles_for_sets(["th_roles", "clan_roles"])
    keys = [spec.key for spec in specs]

    assert keys[:4] == ["leader", "co_leader", "elder", "member"]
    assert keys[4] == "th7"
    assert len(keys) == len(set(keys))


def test_roles_for_sets_rejects_unknown_keys():
    with pytest.raises(UnknownTemplateError):
        roles_for_sets(["clan_roles", "nope"])


def test_default_role_sets():
    defaults = [key for key, role_set in ROLE_SETS.items() if role_set.default_selected]
    assert defaults == ["clan_roles", "th_roles"]
    assert get_role_set("war_roles").roles[0].key == "war_general"

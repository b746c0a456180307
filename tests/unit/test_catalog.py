from __future__ import annotations

import pytest

from lawfirm_authz.auth.catalog import (
    DEFAULT_CATALOG,
    FIRM_PERMISSIONS,
    PLATFORM_PERMISSIONS,
    Role,
    RoleCatalog,
    build_default_catalog,
    parse_role,
)


def test_every_role_has_grants_and_a_level() -> None:
    for role in Role:
        assert isinstance(DEFAULT_CATALOG.permissions_for(role), frozenset)
        assert isinstance(DEFAULT_CATALOG.hierarchy_level(role), int)


def test_levels_follow_declaration_order() -> None:
    levels = [DEFAULT_CATALOG.hierarchy_level(r) for r in Role]
    assert levels == sorted(levels, reverse=True)
    assert len(set(levels)) == len(levels)
    assert DEFAULT_CATALOG.ordered_roles()[0] is Role.CLIENT
    assert DEFAULT_CATALOG.ordered_roles()[-1] is Role.PLATFORM_ADMIN


def test_platform_role_holds_every_permission() -> None:
    assert DEFAULT_CATALOG.permissions_for(Role.PLATFORM_ADMIN) == DEFAULT_CATALOG.all_permissions
    assert set(PLATFORM_PERMISSIONS) <= DEFAULT_CATALOG.all_permissions


def test_owner_holds_every_firm_permission_and_no_platform_one() -> None:
    owner = DEFAULT_CATALOG.permissions_for(Role.OWNER)
    assert owner == frozenset(FIRM_PERMISSIONS)
    assert not owner & set(PLATFORM_PERMISSIONS)


@pytest.mark.parametrize("value", ["", "super_admin", "secretary", None, 42, "OWNERS"])
def test_unknown_role_gets_empty_set(value) -> None:
    assert DEFAULT_CATALOG.permissions_for(value) == frozenset()
    assert parse_role(value) is None


def test_parse_role_is_lenient_on_case_and_spacing() -> None:
    assert parse_role(" Owner ") is Role.OWNER
    assert parse_role(Role.CLIENT) is Role.CLIENT


def test_highest_picks_top_role() -> None:
    assert DEFAULT_CATALOG.highest([Role.CLIENT, Role.SENIOR_PRACTITIONER, Role.ASSISTANT]) is Role.SENIOR_PRACTITIONER
    assert DEFAULT_CATALOG.highest([]) is None


def test_catalog_is_read_only() -> None:
    with pytest.raises(TypeError):
        DEFAULT_CATALOG.grants[Role.CLIENT] = frozenset({"cases.delete"})  # type: ignore[index]


def test_incomplete_catalog_is_rejected() -> None:
    base = build_default_catalog()
    grants = dict(base.grants)
    grants.pop(Role.FRONTDESK)
    with pytest.raises(ValueError):
        RoleCatalog(grants=grants, levels=dict(base.levels))


def test_duplicate_levels_are_rejected() -> None:
    base = build_default_catalog()
    levels = dict(base.levels)
    levels[Role.ASSISTANT] = levels[Role.FRONTDESK]
    with pytest.raises(ValueError):
        RoleCatalog(grants=dict(base.grants), levels=levels)

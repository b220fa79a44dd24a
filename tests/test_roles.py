"""Capability model tests.

Learn: Pure functions, no fixtures. Covers the role table, the
bitmask↔role mapping and has_capability's accepted inputs.
"""

import pytest

from meshgate.auth.roles import (
    ALL_CAPABILITIES,
    MEMBER_MASK,
    OWNER_MASK,
    Capability,
    Role,
    capability_names,
    has_capability,
    role_capabilities,
    role_for_bitmask,
)


def test_capability_bits_are_distinct_powers_of_two():
    values = [int(c) for c in Capability]
    assert len(values) == 16
    assert len(set(values)) == len(values)
    for v in values:
        assert v > 0 and v & (v - 1) == 0


def test_owner_has_every_capability():
    for cap in Capability:
        assert has_capability(Role.owner, cap)
    assert OWNER_MASK == int(ALL_CAPABILITIES)


def test_admin_is_owner_without_owner_bit():
    assert role_capabilities(Role.admin) == OWNER_MASK & ~int(Capability.owner)
    assert not has_capability(Role.admin, Capability.owner)
    assert has_capability(Role.admin, Capability.configure_iam)


def test_member_has_nothing():
    assert MEMBER_MASK == 0
    for cap in Capability:
        assert not has_capability(Role.member, cap)


def test_auditor_gets_only_own_authkeys():
    assert has_capability(Role.auditor, Capability.generate_own_authkeys)
    assert not has_capability(Role.auditor, Capability.generate_authkeys)
    assert not has_capability(Role.auditor, Capability.write_machines)


@pytest.mark.parametrize(
    "role, cap, expected",
    [
        (Role.network_admin, Capability.write_network, True),
        (Role.network_admin, Capability.write_policy, True),
        (Role.network_admin, Capability.write_machines, False),
        (Role.network_admin, Capability.write_users, False),
        (Role.it_admin, Capability.write_machines, True),
        (Role.it_admin, Capability.write_users, True),
        (Role.it_admin, Capability.write_network, False),
        (Role.it_admin, Capability.configure_iam, False),
    ],
)
def test_admin_role_splits(role, cap, expected):
    assert has_capability(role, cap) is expected


def test_has_capability_accepts_names_and_raw_masks():
    assert has_capability("auditor", "read_users")
    assert has_capability(int(Capability.read_users), Capability.read_users)
    assert not has_capability(0, "ui_access")


def test_has_capability_reads_capabilities_attribute():
    class Identity:
        capabilities = int(Capability.ui_access | Capability.read_machines)

    assert has_capability(Identity(), Capability.read_machines)
    assert not has_capability(Identity(), Capability.write_machines)


def test_has_capability_rejects_unknown_names():
    with pytest.raises(ValueError):
        has_capability("superuser", Capability.ui_access)
    with pytest.raises(KeyError):
        has_capability(Role.owner, "fly")


def test_role_for_bitmask_roundtrip_and_custom_masks():
    for role in Role:
        assert role_for_bitmask(role_capabilities(role)) is role
    custom = int(Capability.ui_access | Capability.owner)
    assert role_for_bitmask(custom) is None


def test_capability_names_in_bit_order():
    mask = int(Capability.read_users | Capability.ui_access)
    assert capability_names(mask) == ["ui_access", "read_users"]

"""Capabilities and roles — the authorization model.

Learn: Every permission is a single bit. A role is nothing more than a
fixed union of bits, and what we store per user is the raw integer,
not the role name. That keeps room for per-user overrides later: a
stored mask doesn't have to equal any role's mask.

The "own resource" pattern: some capabilities come in pairs, e.g.
generate_authkeys (any user's keys) vs generate_own_authkeys (only keys
for the control-plane user linked to your own login). Self-service
roles get the second one only.
"""

import enum
from typing import Optional, Union


class Capability(enum.IntFlag):
    """Named permission bits. Values are stored, so never renumber."""

    ui_access = 1 << 0
    read_machines = 1 << 1
    write_machines = 1 << 2
    read_network = 1 << 3
    write_network = 1 << 4
    read_feature = 1 << 5
    write_feature = 1 << 6
    configure_iam = 1 << 7
    read_users = 1 << 8
    write_users = 1 << 9
    generate_authkeys = 1 << 10
    use_own_machines = 1 << 11
    owner = 1 << 12
    read_policy = 1 << 13
    write_policy = 1 << 14
    generate_own_authkeys = 1 << 15


class Role(str, enum.Enum):
    """The closed set of assignable roles."""

    owner = "owner"
    admin = "admin"
    network_admin = "network_admin"
    it_admin = "it_admin"
    auditor = "auditor"
    member = "member"


C = Capability

ALL_CAPABILITIES = C(0)
for _cap in C:
    ALL_CAPABILITIES |= _cap

ROLE_CAPABILITIES: dict[Role, Capability] = {
    Role.owner: ALL_CAPABILITIES,
    Role.admin: ALL_CAPABILITIES & ~C.owner,
    Role.network_admin: (
        C.ui_access
        | C.read_machines
        | C.read_network
        | C.write_network
        | C.read_policy
        | C.write_policy
        | C.read_feature
        | C.read_users
        | C.generate_authkeys
        | C.use_own_machines
    ),
    Role.it_admin: (
        C.ui_access
        | C.read_machines
        | C.write_machines
        | C.read_network
        | C.read_policy
        | C.read_feature
        | C.write_feature
        | C.read_users
        | C.write_users
        | C.generate_authkeys
        | C.use_own_machines
    ),
    Role.auditor: (
        C.ui_access
        | C.read_machines
        | C.read_network
        | C.read_policy
        | C.read_feature
        | C.read_users
        | C.use_own_machines
        | C.generate_own_authkeys
    ),
    Role.member: C(0),
}

OWNER_MASK = int(ROLE_CAPABILITIES[Role.owner])
MEMBER_MASK = int(ROLE_CAPABILITIES[Role.member])


def role_capabilities(role: Union[Role, str]) -> int:
    """Bitmask for a role. Raises ValueError for names outside the closed set."""
    return int(ROLE_CAPABILITIES[Role(role)])


def role_for_bitmask(caps: int) -> Optional[Role]:
    """Role whose mask equals `caps` exactly, or None for a custom mask."""
    for role, mask in ROLE_CAPABILITIES.items():
        if int(mask) == caps:
            return role
    return None


def capability_names(caps: int) -> list[str]:
    """Names of the bits set in `caps`, in bit order."""
    return [cap.name for cap in Capability if caps & cap]


def _as_bitmask(subject) -> int:
    if isinstance(subject, bool):
        raise TypeError("a bool is not a capability bitmask")
    if isinstance(subject, int):
        # Covers Capability (an int) and raw stored masks.
        return int(subject)
    if isinstance(subject, (Role, str)):
        return role_capabilities(subject)
    caps = getattr(subject, "capabilities", None)
    if isinstance(caps, int):
        return caps
    raise TypeError(f"cannot resolve capabilities from {type(subject).__name__}")


def has_capability(subject, capability: Union[Capability, str]) -> bool:
    """Check one capability bit.

    `subject` is a role (enum or name), a raw bitmask, or anything with an
    integer `capabilities` attribute (e.g. the current session identity).
    """
    if isinstance(capability, str):
        capability = Capability[capability]
    return (_as_bitmask(subject) & int(capability)) != 0

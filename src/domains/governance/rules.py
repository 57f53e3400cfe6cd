# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Actor context and the static access rule table.

The rule table is keyed by ``(resource, action)`` and frozen at import time.
Each pair has exactly one rule.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping


class UserType(str, Enum):
    """Kinds of actors that can call into the registries."""

    ADMIN = "admin"
    SYSTEM = "system"
    API = "api"
    ANONYMOUS = "anonymous"


class ComplianceFlag(str, Enum):
    """Regulatory tags attached to rules and audit entries."""

    COPPA = "COPPA"
    GDPR = "GDPR"
    RIGHT_TO_BE_FORGOTTEN = "RIGHT_TO_BE_FORGOTTEN"
    DATA_PORTABILITY = "DATA_PORTABILITY"
    DATA_EXPORT = "DATA_EXPORT"


@dataclass(frozen=True)
class AccessContext:
    """Who is calling, from where, and with which permissions.

    ``permissions=None`` means the caller did not resolve permissions at
    all; an empty set means it resolved them and found none.

    Attributes:
        user_type: Actor kind.
        user_id: Acting user, if known.
        hub_id: Hub the request is scoped to.
        ip_address: Client address for auditing.
        user_agent: Client user agent for auditing.
        permissions: Granted permission strings, or None if not populated.
    """

    user_type: UserType
    user_id: str | None = None
    hub_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    permissions: frozenset[str] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_type", UserType(self.user_type))
        if self.permissions is not None and not isinstance(self.permissions, frozenset):
            object.__setattr__(self, "permissions", frozenset(self.permissions))

    @classmethod
    def system(cls, hub_id: str | None = None) -> "AccessContext":
        """Context used for internal calls that carry no caller identity."""
        return cls(user_type=UserType.SYSTEM, hub_id=hub_id)

    def with_hub(self, hub_id: str | None) -> "AccessContext":
        """Return a copy of this context scoped to ``hub_id``."""
        return replace(self, hub_id=hub_id)


@dataclass(frozen=True)
class AccessRule:
    """Declarative rule for one ``(resource, action)`` pair."""

    resource: str
    action: str
    required_permissions: frozenset[str] = frozenset()
    allowed_user_types: frozenset[UserType] = frozenset()
    requires_hub_access: bool = False
    sensitive_data: bool = False
    compliance_required: tuple[str, ...] = field(default_factory=tuple)

    @property
    def key(self) -> tuple[str, str]:
        return (self.resource, self.action)


def _rule(
    resource: str,
    action: str,
    permissions: Iterable[str],
    user_types: Iterable[UserType],
    hub: bool,
    sensitive: bool = False,
    compliance: Iterable[ComplianceFlag] = (),
) -> AccessRule:
    return AccessRule(
        resource=resource,
        action=action,
        required_permissions=frozenset(permissions),
        allowed_user_types=frozenset(user_types),
        requires_hub_access=hub,
        sensitive_data=sensitive,
        compliance_required=tuple(flag.value for flag in compliance),
    )


_ADMIN = (UserType.ADMIN,)
_ADMIN_SYSTEM = (UserType.ADMIN, UserType.SYSTEM)
_SYSTEM_API = (UserType.SYSTEM, UserType.API)
_PUBLIC = (UserType.SYSTEM, UserType.API, UserType.ANONYMOUS)

_COPPA_GDPR = (ComplianceFlag.COPPA, ComplianceFlag.GDPR)

_RULES: tuple[AccessRule, ...] = (
    # Student records
    _rule("student", "view", ["student:read"], _ADMIN_SYSTEM, True, True, _COPPA_GDPR),
    _rule("student", "create", ["student:write"], _ADMIN_SYSTEM, True, True, _COPPA_GDPR),
    _rule("student", "update", ["student:write"], _ADMIN_SYSTEM, True, True, _COPPA_GDPR),
    _rule(
        "student",
        "delete",
        ["student:delete"],
        _ADMIN,
        True,
        True,
        (*_COPPA_GDPR, ComplianceFlag.RIGHT_TO_BE_FORGOTTEN),
    ),
    _rule(
        "student",
        "export",
        ["student:export"],
        _ADMIN,
        True,
        True,
        (ComplianceFlag.GDPR, ComplianceFlag.DATA_PORTABILITY),
    ),
    _rule("student", "authenticate", [], _PUBLIC, False),
    # Devices
    _rule("device", "view", ["device:read"], _ADMIN_SYSTEM, True),
    _rule("device", "create", ["device:write"], _ADMIN_SYSTEM, True),
    _rule("device", "update", ["device:write"], _ADMIN_SYSTEM, True),
    _rule("device", "delete", ["device:delete"], _ADMIN, True),
    _rule("device", "register", [], _PUBLIC, False),
    _rule("device", "validate", [], _PUBLIC, False),
    # Analytics
    _rule("analytics", "view", ["analytics:read"], _ADMIN_SYSTEM, True),
    _rule("analytics", "collect", [], _SYSTEM_API, False),
    _rule(
        "analytics",
        "export",
        ["analytics:export"],
        _ADMIN,
        True,
        True,
        (ComplianceFlag.GDPR,),
    ),
    # Hubs
    _rule("hub", "view", ["hub:read"], _ADMIN_SYSTEM, True),
    _rule("hub", "manage", ["hub:admin"], _ADMIN, True),
    # Audit log
    _rule("audit", "view", ["audit:read"], _ADMIN, False, True),
)

ACCESS_RULES: Mapping[tuple[str, str], AccessRule] = MappingProxyType(
    {rule.key: rule for rule in _RULES}
)

DEFAULT_PERMISSIONS: Mapping[UserType, tuple[str, ...]] = MappingProxyType(
    {
        UserType.ADMIN: (
            "student:read",
            "student:write",
            "student:delete",
            "student:export",
            "device:read",
            "device:write",
            "device:delete",
            "analytics:read",
            "analytics:export",
            "hub:read",
            "hub:admin",
            "audit:read",
        ),
        UserType.SYSTEM: (
            "student:read",
            "student:write",
            "device:read",
            "device:write",
            "analytics:read",
            "hub:read",
        ),
        UserType.API: ("device:read", "analytics:read"),
        UserType.ANONYMOUS: (),
    }
)

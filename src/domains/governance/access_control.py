# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Rule-based access control and COPPA/GDPR policy checks.

This module provides the AccessControlService that handles:
- Access decisions for (resource, action) pairs against the rule table
- Enforcement before registry mutations
- Student age validation (COPPA)
- Data retention evaluation

check_access() returns an AccessDecision value and never raises for a
denial; enforce_access() is the one place a denial becomes an exception.

Example:
    >>> access = AccessControlService()
    >>> context = AccessContext(user_type="system", hub_id="hub-1")
    >>> access.enforce_access(context, "student", "create")
    ['COPPA', 'GDPR']
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Mapping

from src.domains.governance.rules import (
    ACCESS_RULES,
    DEFAULT_PERMISSIONS,
    AccessContext,
    AccessRule,
    UserType,
)
from src.utils.datetime import add_years, ensure_utc, utc_now

logger = logging.getLogger(__name__)

DataType = Literal["student", "analytics", "audit"]

COPPA_MINIMUM_AGE = 13
MINIMUM_PLAUSIBLE_AGE = 3


class AccessControlError(Exception):
    """Base exception for access control errors."""

    pass


class AccessDeniedError(AccessControlError):
    """Raised by enforce_access() when a rule denies the request.

    Attributes:
        resource: Requested resource.
        action: Requested action.
        reason: Non-leaking denial reason.
    """

    def __init__(self, reason: str, resource: str, action: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.resource = resource
        self.action = action


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of check_access()."""

    allowed: bool
    reason: str | None = None
    compliance_flags: tuple[str, ...] = ()

    @classmethod
    def allow(cls, rule: AccessRule) -> "AccessDecision":
        return cls(allowed=True, compliance_flags=rule.compliance_required)

    @classmethod
    def deny(cls, reason: str) -> "AccessDecision":
        return cls(allowed=False, reason=reason)


@dataclass
class AgeValidation:
    """Outcome of validate_student_age()."""

    compliant: bool
    requires_parental_consent: bool
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RetentionDecision:
    """Outcome of should_retain_data().

    Attributes:
        retain: Whether the data is still inside its retention window.
        reason: Human-readable explanation.
        action: Suggested action once expired ("delete" or "anonymize").
    """

    retain: bool
    reason: str
    action: str | None = None


@dataclass(frozen=True)
class RetentionRule:
    years: int
    expired_action: str
    note: str


RETENTION_POLICY: dict[str, RetentionRule] = {
    "student": RetentionRule(years=3, expired_action="delete", note=""),
    "analytics": RetentionRule(
        years=2,
        expired_action="anonymize",
        note=" (can be anonymized after retention period)",
    ),
    "audit": RetentionRule(years=7, expired_action="delete", note=" (compliance requirement)"),
}


class AccessControlService:
    """Evaluates the static access rule table and compliance policies.

    The service is stateless; one instance can be shared by all requests.

    Attributes:
        _rules: Mapping of (resource, action) to AccessRule.
    """

    def __init__(self, rules: Mapping[tuple[str, str], AccessRule] | None = None) -> None:
        """Initialize the service.

        Args:
            rules: Rule table override, defaults to ACCESS_RULES.
        """
        self._rules = ACCESS_RULES if rules is None else rules

    def get_rule(self, resource: str, action: str) -> AccessRule | None:
        """Look up the rule for a resource/action pair."""
        return self._rules.get((resource, action))

    def check_access(
        self,
        context: AccessContext,
        resource: str,
        action: str,
        resource_id: str | None = None,
    ) -> AccessDecision:
        """Decide whether ``context`` may perform ``action`` on ``resource``.

        Unknown pairs are denied. The permission check only runs when the
        context carries a permission set; contexts without one are judged
        on user type and hub scope alone.

        Args:
            context: Caller context.
            resource: Resource tag, e.g. "student".
            action: Action tag, e.g. "create".
            resource_id: Optional id, used for logging only.

        Returns:
            AccessDecision with the compliance flags of the matched rule.
        """
        try:
            rule = self.get_rule(resource, action)
            if rule is None:
                logger.warning("No access rule found for %s:%s", resource, action)
                return AccessDecision.deny("No access rule defined")

            decision = self._evaluate(rule, context)

            if rule.sensitive_data:
                logger.warning(
                    "Sensitive data access %s: %s accessing %s:%s%s%s",
                    "allowed" if decision.allowed else "denied",
                    context.user_type.value,
                    resource,
                    action,
                    f" ({resource_id})" if resource_id else "",
                    f" in hub {context.hub_id}" if context.hub_id else "",
                )

            return decision
        except Exception:
            logger.exception("Error checking access for %s:%s", resource, action)
            return AccessDecision.deny("Access check failed")

    def enforce_access(
        self,
        context: AccessContext,
        resource: str,
        action: str,
        resource_id: str | None = None,
    ) -> list[str]:
        """Raise unless ``context`` may perform ``action`` on ``resource``.

        Returns:
            Compliance flags of the matched rule.

        Raises:
            AccessDeniedError: If check_access() denies the request.
        """
        decision = self.check_access(context, resource, action, resource_id)

        if not decision.allowed:
            reason = decision.reason or "Access denied"
            logger.warning(
                "Access denied: %s tried to %s %s%s - %s",
                context.user_type.value,
                action,
                resource,
                f" ({resource_id})" if resource_id else "",
                reason,
            )
            raise AccessDeniedError(reason, resource, action)

        return list(decision.compliance_flags)

    def _evaluate(self, rule: AccessRule, context: AccessContext) -> AccessDecision:
        if context.user_type not in rule.allowed_user_types:
            return AccessDecision.deny(
                f"User type '{context.user_type.value}' not allowed for {rule.resource}:{rule.action}"
            )

        # Skipped, not denied, when permissions were never populated.
        if context.permissions is not None and rule.required_permissions:
            if not rule.required_permissions <= context.permissions:
                return AccessDecision.deny(
                    "Missing required permissions: "
                    + ", ".join(sorted(rule.required_permissions))
                )

        if rule.requires_hub_access and not context.hub_id:
            return AccessDecision.deny("Hub access required but no hub ID provided")

        return AccessDecision.allow(rule)

    # =========================================================================
    # Permissions and hub scope
    # =========================================================================

    def get_user_permissions(self, user_type: UserType | str) -> list[str]:
        """Default permission set for an actor type."""
        return list(DEFAULT_PERMISSIONS.get(UserType(user_type), ()))

    def can_access_hub(self, context: AccessContext, hub_id: str) -> bool:
        """Admins may access any hub, other actors only their own."""
        if context.user_type is UserType.ADMIN:
            return True
        return context.hub_id == hub_id

    # =========================================================================
    # Compliance reference data
    # =========================================================================

    def get_coppa_requirements(self) -> dict[str, int | bool]:
        """COPPA requirements applied to student records."""
        return {
            "minimum_age": COPPA_MINIMUM_AGE,
            "parental_consent_required": True,
            "data_minimization": True,
            "retention_limits": True,
        }

    def get_gdpr_requirements(self) -> dict[str, list[str]]:
        """GDPR lawful bases, data subject rights and principles."""
        return {
            "lawful_basis": [
                "consent",
                "legitimate_interest",
                "public_task",
            ],
            "data_subject_rights": [
                "right_to_access",
                "right_to_rectification",
                "right_to_erasure",
                "right_to_portability",
                "right_to_restrict_processing",
                "right_to_object",
            ],
            "data_protection_principles": [
                "lawfulness_fairness_transparency",
                "purpose_limitation",
                "data_minimisation",
                "accuracy",
                "storage_limitation",
                "integrity_confidentiality",
                "accountability",
            ],
        }

    def get_data_retention_policy(self) -> dict[str, dict[str, int | bool]]:
        """Retention periods per data type."""
        return {
            "student_data": {"years": RETENTION_POLICY["student"].years, "after_inactive": True},
            "analytics_data": {"years": RETENTION_POLICY["analytics"].years, "anonymized": True},
            "audit_logs": {"years": RETENTION_POLICY["audit"].years, "compliance_required": True},
        }

    # =========================================================================
    # Policy evaluation
    # =========================================================================

    def validate_student_age(self, age: int | None) -> AgeValidation:
        """Check a student's age against COPPA.

        Missing or implausible ages are non-compliant. Children under 13 are
        compliant but need parental consent.
        """
        if age is None:
            return AgeValidation(
                compliant=False,
                requires_parental_consent=True,
                warnings=["Age not provided - cannot verify COPPA compliance"],
            )

        if age < MINIMUM_PLAUSIBLE_AGE:
            return AgeValidation(
                compliant=False,
                requires_parental_consent=True,
                warnings=["Age below minimum expected range"],
            )

        if age < COPPA_MINIMUM_AGE:
            return AgeValidation(
                compliant=True,
                requires_parental_consent=True,
                warnings=[f"Student under {COPPA_MINIMUM_AGE} - COPPA parental consent required"],
            )

        return AgeValidation(compliant=True, requires_parental_consent=False)

    def should_retain_data(
        self,
        data_type: DataType,
        last_activity: datetime,
        student_age: int | None = None,
        now: datetime | None = None,
    ) -> RetentionDecision:
        """Decide whether data last touched at ``last_activity`` must be kept.

        Args:
            data_type: "student", "analytics" or "audit".
            last_activity: Last activity timestamp (naive means UTC).
            student_age: Age of the student, for COPPA notes.
            now: Evaluation time, defaults to the current time.

        Returns:
            RetentionDecision; expired data carries the suggested action.

        Raises:
            ValueError: If data_type is unknown.
        """
        rule = RETENTION_POLICY.get(data_type)
        if rule is None:
            raise ValueError(f"Unknown data type: {data_type}")

        note = rule.note
        if data_type == "student" and student_age is not None and student_age < COPPA_MINIMUM_AGE:
            note = " (COPPA compliance - parental consent may affect retention)"

        current = ensure_utc(now) if now is not None else utc_now()
        cutoff = add_years(ensure_utc(last_activity), rule.years)

        if current > cutoff:
            return RetentionDecision(
                retain=False,
                reason=f"Data older than {rule.years} years{note}",
                action=rule.expired_action,
            )

        return RetentionDecision(
            retain=True,
            reason=f"Within {rule.years} year retention period{note}",
        )

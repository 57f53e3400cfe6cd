# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the AccessControlService.

Tests rule evaluation, COPPA age checks and retention decisions.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from src.domains.governance.access_control import (
    AccessControlService,
    AccessDeniedError,
)
from src.domains.governance.rules import (
    ACCESS_RULES,
    AccessContext,
    AccessRule,
    ComplianceFlag,
    UserType,
)


@pytest.fixture
def access() -> AccessControlService:
    """Create an access control service with the default rules."""
    return AccessControlService()


def ctx(user_type: UserType, hub_id: str | None = "hub-1", permissions=None) -> AccessContext:
    """Build a context for the given actor."""
    return AccessContext(user_type=user_type, user_id="u-1", hub_id=hub_id, permissions=permissions)


class TestRuleTable:
    """Tests for the static rule table."""

    def test_one_rule_per_pair(self) -> None:
        """Test that every key matches its rule."""
        for key, rule in ACCESS_RULES.items():
            assert key == rule.key

    def test_table_is_read_only(self) -> None:
        """Test that the rule table cannot be modified."""
        with pytest.raises(TypeError):
            ACCESS_RULES[("student", "view")] = None  # type: ignore[index]

    def test_student_delete_rule(self) -> None:
        """Test the erasure rule carries right-to-be-forgotten."""
        rule = ACCESS_RULES[("student", "delete")]

        assert rule.allowed_user_types == frozenset({UserType.ADMIN})
        assert rule.sensitive_data is True
        assert ComplianceFlag.RIGHT_TO_BE_FORGOTTEN.value in rule.compliance_required

    def test_public_rules_do_not_need_hub(self) -> None:
        """Test that device pairing and student login need no hub scope."""
        for key in [("device", "register"), ("device", "validate"), ("student", "authenticate")]:
            rule = ACCESS_RULES[key]
            assert rule.requires_hub_access is False
            assert UserType.ANONYMOUS in rule.allowed_user_types


class TestCheckAccess:
    """Tests for check_access()."""

    def test_admin_can_view_student(self, access: AccessControlService) -> None:
        """Test that an admin with hub scope may view students."""
        decision = access.check_access(ctx(UserType.ADMIN), "student", "view")

        assert decision.allowed is True
        assert decision.compliance_flags == ("COPPA", "GDPR")

    def test_unknown_pair_denied(self, access: AccessControlService) -> None:
        """Test that pairs without a rule are denied."""
        decision = access.check_access(ctx(UserType.ADMIN), "student", "teleport")

        assert decision.allowed is False
        assert decision.reason == "No access rule defined"

    def test_wrong_user_type_denied(self, access: AccessControlService) -> None:
        """Test that the system actor cannot delete students."""
        decision = access.check_access(ctx(UserType.SYSTEM), "student", "delete")

        assert decision.allowed is False
        assert "not allowed" in decision.reason

    def test_missing_hub_denied(self, access: AccessControlService) -> None:
        """Test that hub-scoped rules require a hub id."""
        decision = access.check_access(ctx(UserType.ADMIN, hub_id=None), "student", "view")

        assert decision.allowed is False
        assert decision.reason == "Hub access required but no hub ID provided"

    def test_missing_permission_denied(self, access: AccessControlService) -> None:
        """Test that an explicit permission set must cover the rule."""
        context = ctx(UserType.ADMIN, permissions={"student:read"})

        decision = access.check_access(context, "student", "create")

        assert decision.allowed is False
        assert "student:write" in decision.reason

    def test_permissions_checked_when_present(self, access: AccessControlService) -> None:
        """Test that a covering permission set is accepted."""
        context = ctx(UserType.SYSTEM, permissions=access.get_user_permissions(UserType.SYSTEM))

        assert access.check_access(context, "student", "create").allowed is True

    def test_empty_permissions_deny(self, access: AccessControlService) -> None:
        """Test that an empty permission set denies rules needing permissions."""
        context = ctx(UserType.ADMIN, permissions=frozenset())

        assert access.check_access(context, "student", "view").allowed is False

    def test_unpopulated_permissions_skip_check(self, access: AccessControlService) -> None:
        """Test that permissions=None is judged on user type and hub only."""
        assert access.check_access(ctx(UserType.ADMIN), "audit", "view").allowed is True

    def test_anonymous_may_validate_device(self, access: AccessControlService) -> None:
        """Test that device validation is public."""
        decision = access.check_access(ctx(UserType.ANONYMOUS, hub_id=None), "device", "validate")

        assert decision.allowed is True

    def test_anonymous_cannot_view_students(self, access: AccessControlService) -> None:
        """Test that anonymous callers never reach student records."""
        assert access.check_access(ctx(UserType.ANONYMOUS), "student", "view").allowed is False

    def test_error_during_check_denies(self, access: AccessControlService) -> None:
        """Test that evaluation errors fail closed."""
        with patch.object(access, "_evaluate", side_effect=RuntimeError("boom")):
            decision = access.check_access(ctx(UserType.ADMIN), "student", "view")

        assert decision.allowed is False
        assert decision.reason == "Access check failed"

    def test_sensitive_access_logged(self, access: AccessControlService, caplog) -> None:
        """Test that sensitive rules log a warning even when allowed."""
        with caplog.at_level("WARNING"):
            access.check_access(ctx(UserType.ADMIN), "student", "view", "s-1")

        assert "Sensitive data access allowed" in caplog.text

    def test_custom_rule_table(self) -> None:
        """Test that a custom table replaces the defaults."""
        rule = AccessRule(
            resource="report",
            action="view",
            allowed_user_types=frozenset({UserType.API}),
        )
        access = AccessControlService(rules={rule.key: rule})

        assert access.check_access(ctx(UserType.API, hub_id=None), "report", "view").allowed is True
        assert access.check_access(ctx(UserType.ADMIN), "student", "view").allowed is False


class TestEnforceAccess:
    """Tests for enforce_access()."""

    def test_returns_compliance_flags(self, access: AccessControlService) -> None:
        """Test that the matched rule's flags are returned."""
        flags = access.enforce_access(ctx(UserType.ADMIN), "student", "export")

        assert flags == ["GDPR", "DATA_PORTABILITY"]

    def test_raises_on_denial(self, access: AccessControlService) -> None:
        """Test that a denial raises AccessDeniedError with the reason."""
        with pytest.raises(AccessDeniedError) as exc_info:
            access.enforce_access(ctx(UserType.API), "student", "view")

        assert exc_info.value.resource == "student"
        assert exc_info.value.action == "view"
        assert "not allowed" in exc_info.value.reason


class TestPermissionsAndHubs:
    """Tests for permission sets and hub scope."""

    def test_admin_permissions(self, access: AccessControlService) -> None:
        """Test that admins hold every permission."""
        permissions = access.get_user_permissions(UserType.ADMIN)

        assert "student:delete" in permissions
        assert "audit:read" in permissions

    def test_anonymous_has_no_permissions(self, access: AccessControlService) -> None:
        """Test that anonymous callers hold nothing."""
        assert access.get_user_permissions("anonymous") == []

    def test_admin_can_access_any_hub(self, access: AccessControlService) -> None:
        """Test that admins are not limited to their hub."""
        assert access.can_access_hub(ctx(UserType.ADMIN, hub_id="hub-1"), "hub-2") is True

    def test_system_limited_to_own_hub(self, access: AccessControlService) -> None:
        """Test that other actors may only access their own hub."""
        context = ctx(UserType.SYSTEM, hub_id="hub-1")

        assert access.can_access_hub(context, "hub-1") is True
        assert access.can_access_hub(context, "hub-2") is False


class TestValidateStudentAge:
    """Tests for validate_student_age()."""

    def test_missing_age(self, access: AccessControlService) -> None:
        """Test that a missing age is not compliant."""
        result = access.validate_student_age(None)

        assert result.compliant is False
        assert result.requires_parental_consent is True
        assert result.warnings

    @pytest.mark.parametrize("age", [0, 2])
    def test_implausible_age(self, access: AccessControlService, age: int) -> None:
        """Test that ages below three are not compliant."""
        assert access.validate_student_age(age).compliant is False

    @pytest.mark.parametrize("age", [3, 10, 12])
    def test_under_thirteen_needs_consent(self, access: AccessControlService, age: int) -> None:
        """Test that children under 13 are compliant with parental consent."""
        result = access.validate_student_age(age)

        assert result.compliant is True
        assert result.requires_parental_consent is True
        assert "COPPA" in result.warnings[0]

    @pytest.mark.parametrize("age", [13, 17])
    def test_thirteen_and_over(self, access: AccessControlService, age: int) -> None:
        """Test that 13 and older need no consent."""
        result = access.validate_student_age(age)

        assert result.compliant is True
        assert result.requires_parental_consent is False
        assert result.warnings == []


class TestShouldRetainData:
    """Tests for should_retain_data()."""

    NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def test_recent_student_data_retained(self, access: AccessControlService) -> None:
        """Test that student data inside three years is kept."""
        result = access.should_retain_data("student", self.NOW - timedelta(days=30), now=self.NOW)

        assert result.retain is True
        assert result.reason == "Within 3 year retention period"

    def test_old_student_data_deleted(self, access: AccessControlService) -> None:
        """Test that student data older than three years expires."""
        last_activity = datetime(2022, 5, 1, tzinfo=timezone.utc)

        result = access.should_retain_data("student", last_activity, now=self.NOW)

        assert result.retain is False
        assert result.action == "delete"

    def test_exact_boundary_retained(self, access: AccessControlService) -> None:
        """Test that data exactly at the cutoff is still retained."""
        last_activity = datetime(2022, 6, 1, 12, 0, tzinfo=timezone.utc)

        assert access.should_retain_data("student", last_activity, now=self.NOW).retain is True

    def test_analytics_anonymized(self, access: AccessControlService) -> None:
        """Test that expired analytics are anonymized."""
        last_activity = datetime(2023, 5, 1, tzinfo=timezone.utc)

        result = access.should_retain_data("analytics", last_activity, now=self.NOW)

        assert result.retain is False
        assert result.action == "anonymize"

    def test_audit_kept_seven_years(self, access: AccessControlService) -> None:
        """Test that audit data is kept for seven years."""
        last_activity = datetime(2019, 1, 1, tzinfo=timezone.utc)

        result = access.should_retain_data("audit", last_activity, now=self.NOW)

        assert result.retain is True
        assert "compliance requirement" in result.reason

    def test_coppa_note_for_young_students(self, access: AccessControlService) -> None:
        """Test that students under 13 get a COPPA note."""
        result = access.should_retain_data(
            "student", self.NOW - timedelta(days=1), student_age=9, now=self.NOW
        )

        assert "COPPA" in result.reason

    def test_naive_timestamps_are_utc(self, access: AccessControlService) -> None:
        """Test that naive timestamps from storage are treated as UTC."""
        result = access.should_retain_data("student", datetime(2025, 5, 1), now=self.NOW)

        assert result.retain is True

    def test_unknown_type_rejected(self, access: AccessControlService) -> None:
        """Test that unknown data types raise ValueError."""
        with pytest.raises(ValueError):
            access.should_retain_data("photos", self.NOW)  # type: ignore[arg-type]


class TestReferenceData:
    """Tests for compliance reference data."""

    def test_coppa_requirements(self, access: AccessControlService) -> None:
        """Test COPPA minimum age."""
        assert access.get_coppa_requirements()["minimum_age"] == 13

    def test_gdpr_rights(self, access: AccessControlService) -> None:
        """Test that the right to erasure is listed."""
        assert "right_to_erasure" in access.get_gdpr_requirements()["data_subject_rights"]

    def test_retention_policy(self, access: AccessControlService) -> None:
        """Test retention periods."""
        policy = access.get_data_retention_policy()

        assert policy["student_data"]["years"] == 3
        assert policy["analytics_data"]["years"] == 2
        assert policy["audit_logs"]["years"] == 7

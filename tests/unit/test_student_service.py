# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for Student service.

Runs against an in-memory SQLite database so unique constraints and
encrypted columns behave as in production.
"""

import re
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from src.domains.governance.access_control import AccessDeniedError
from src.domains.governance.audit_logger import AuditLogFilters
from src.domains.governance.rules import AccessContext, UserType
from src.domains.hub.service import HubNotFoundError
from src.domains.security.codes import (
    CodeGenerationExhaustedError,
    CodeKind,
    validate_code_format,
)
from src.domains.student.service import (
    StudentLimitExceededError,
    StudentNotFoundError,
    StudentRetentionError,
    StudentService,
    StudentValidationError,
)
from src.infrastructure.database.models import Student
from src.models.student import StudentCreateRequest, StudentUpdateRequest
from src.utils.datetime import utc_now

TOKEN_PATTERN = re.compile(r"^[0-9a-f]+:[0-9a-f]+:[0-9a-f]+$")


@pytest.fixture
def student_service(db_session, services):
    """Create student service bound to the test database."""
    return StudentService(db=db_session, services=services)


@pytest.fixture
async def sample_student(student_service, hub):
    """Create a ten-year-old student on the test hub."""
    return await student_service.create_student(
        hub.hub_id,
        StudentCreateRequest(
            first_name="Amara",
            last_name="Okafor",
            grade="5",
            age=10,
            metadata={"guardian_consent": True},
        ),
    )


class TestStudentServiceCreate:
    """Tests for student creation."""

    @pytest.mark.asyncio
    async def test_create_student_success(self, student_service, services, hub, db_session):
        """Test the full create flow: code, encryption and audit."""
        result = await student_service.create_student(
            hub.hub_id,
            StudentCreateRequest(first_name="Amara", last_name="Okafor", grade="5", age=10),
        )

        assert result.first_name == "Amara"
        assert result.last_name == "Okafor"
        assert result.status == "active"
        assert len(result.student_code) == 4
        assert validate_code_format(CodeKind.STUDENT, result.student_code)

        row = (await db_session.execute(select(Student).where(Student.id == result.id))).scalar_one()
        assert TOKEN_PATTERN.match(row.first_name_encrypted)
        assert TOKEN_PATTERN.match(row.last_name_encrypted)
        assert "Amara" not in row.first_name_encrypted

        page = services.audit.get_audit_logs(AuditLogFilters(resource="student", action="create"))
        entry = page.logs[0]
        assert entry.success is True
        assert entry.user_type is UserType.SYSTEM
        assert entry.compliance_flags == ["COPPA", "GDPR"]
        assert entry.details["requires_parental_consent"] is True
        assert "first_name" not in entry.details

    @pytest.mark.asyncio
    async def test_blank_names_not_encrypted(self, student_service, hub, db_session):
        """Test that missing names are stored as NULL."""
        result = await student_service.create_student(
            hub.hub_id, StudentCreateRequest(first_name="  ", age=14)
        )

        row = (await db_session.execute(select(Student).where(Student.id == result.id))).scalar_one()
        assert row.first_name_encrypted is None
        assert result.first_name is None

    @pytest.mark.asyncio
    async def test_metadata_round_trip(self, sample_student):
        """Test that metadata is encrypted and decoded back to a dict."""
        assert sample_student.metadata == {"guardian_consent": True}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("age", [2, 19])
    async def test_age_out_of_range(self, student_service, hub, age):
        """Test that ages outside 3-18 are rejected."""
        with pytest.raises(StudentValidationError):
            await student_service.create_student(hub.hub_id, StudentCreateRequest(age=age))

    @pytest.mark.asyncio
    async def test_missing_age_rejected(self, student_service, services, hub):
        """Test that COPPA compliance cannot be verified without an age."""
        with pytest.raises(StudentValidationError, match="COPPA"):
            await student_service.create_student(hub.hub_id, StudentCreateRequest(first_name="Ada"))

        page = services.audit.get_audit_logs(AuditLogFilters(resource="student", success=False))
        assert page.total == 1
        assert page.logs[0].resource_id == "unknown"

    @pytest.mark.asyncio
    async def test_unknown_hub(self, student_service):
        """Test that students need a registered hub."""
        with pytest.raises(HubNotFoundError):
            await student_service.create_student("hub-missing", StudentCreateRequest(age=10))

    @pytest.mark.asyncio
    async def test_anonymous_cannot_create(self, student_service, hub, anonymous_context):
        """Test that anonymous callers are denied."""
        with pytest.raises(AccessDeniedError):
            await student_service.create_student(
                hub.hub_id, StudentCreateRequest(age=10), anonymous_context
            )

    @pytest.mark.asyncio
    async def test_hub_limit(self, student_service, services, hub):
        """Test that a full hub rejects new students."""
        services.registry.max_students_per_hub = 1
        await student_service.create_student(hub.hub_id, StudentCreateRequest(age=10))

        with pytest.raises(StudentLimitExceededError):
            await student_service.create_student(hub.hub_id, StudentCreateRequest(age=11))


class TestStudentServiceBulkCreate:
    """Tests for bulk creation."""

    @pytest.mark.asyncio
    async def test_bulk_create(self, student_service, services, hub):
        """Test that every student gets its own code."""
        requests = [StudentCreateRequest(first_name=f"S{i}", age=8 + i) for i in range(5)]

        results = await student_service.bulk_create_students(hub.hub_id, requests)

        assert len(results) == 5
        assert len({student.student_code for student in results}) == 5

        page = services.audit.get_audit_logs(AuditLogFilters(resource="student", action="create"))
        assert page.logs[0].resource_id == "multiple"
        assert page.logs[0].details == {"students_created": 5}

    @pytest.mark.asyncio
    async def test_bulk_limit(self, student_service, services, hub):
        """Test that oversized batches are rejected before inserting."""
        services.registry.max_students_per_bulk = 2
        requests = [StudentCreateRequest(age=10) for _ in range(3)]

        with pytest.raises(StudentLimitExceededError):
            await student_service.bulk_create_students(hub.hub_id, requests)

        assert await student_service.list_students_for_hub(hub.hub_id) == []

    @pytest.mark.asyncio
    async def test_bulk_validates_all_first(self, student_service, hub):
        """Test that one invalid age aborts the whole batch."""
        requests = [StudentCreateRequest(age=10), StudentCreateRequest(age=30)]

        with pytest.raises(StudentValidationError):
            await student_service.bulk_create_students(hub.hub_id, requests)

        assert await student_service.list_students_for_hub(hub.hub_id) == []


class TestStudentCodeRace:
    """Tests for codes taken between the existence check and the insert."""

    @pytest.mark.asyncio
    async def test_create_retries_after_unique_violation(
        self, student_service, services, hub, db_session, stale_exists
    ):
        """Test that a unique-constraint hit is retried with a new code."""
        db_session.add(Student(hub_id=hub.hub_id, student_code="ABCD"))
        await db_session.commit()

        stale = stale_exists(student_service._student_code_exists, misses=1)
        with (
            patch.object(student_service, "_student_code_exists", stale),
            patch.object(services.codes, "candidate", side_effect=["ABCD", "EFGH"]),
        ):
            result = await student_service.create_student(
                hub.hub_id, StudentCreateRequest(first_name="Amara", age=10)
            )

        assert result.student_code == "EFGH"
        assert result.first_name == "Amara"

        codes = (await db_session.execute(select(Student.student_code))).scalars().all()
        assert sorted(codes) == ["ABCD", "EFGH"]

    @pytest.mark.asyncio
    async def test_bulk_create_survives_conflict(
        self, student_service, services, hub, stale_exists
    ):
        """Test that a conflict inside a batch keeps the rows already inserted."""
        requests = [StudentCreateRequest(first_name=f"S{i}", age=9) for i in range(2)]

        stale = stale_exists(student_service._student_code_exists, misses=2)
        with (
            patch.object(student_service, "_student_code_exists", stale),
            patch.object(services.codes, "candidate", side_effect=["ABCD", "ABCD", "EFGH"]),
        ):
            results = await student_service.bulk_create_students(hub.hub_id, requests)

        assert [student.student_code for student in results] == ["ABCD", "EFGH"]
        assert [student.first_name for student in results] == ["S0", "S1"]
        assert len(await student_service.list_students_for_hub(hub.hub_id)) == 2

    @pytest.mark.asyncio
    async def test_bulk_create_is_all_or_nothing(self, student_service, services, hub):
        """Test that exhausting codes for one record discards the whole batch."""
        requests = [StudentCreateRequest(first_name=f"S{i}", age=9) for i in range(2)]

        with patch.object(services.codes, "candidate", return_value="ABCD"):
            with pytest.raises(CodeGenerationExhaustedError):
                await student_service.bulk_create_students(hub.hub_id, requests)

        assert await student_service.list_students_for_hub(hub.hub_id) == []

        page = services.audit.get_audit_logs(
            AuditLogFilters(resource="student", action="create", success=False)
        )
        assert page.logs[0].details == {"students_requested": 2, "students_created": 0}

class TestStudentServiceRead:
    """Tests for listing and lookup."""

    @pytest.mark.asyncio
    async def test_list_students(self, student_service, sample_student, hub):
        """Test that listing decrypts names."""
        results = await student_service.list_students_for_hub(hub.hub_id)

        assert [student.first_name for student in results] == ["Amara"]

    @pytest.mark.asyncio
    async def test_list_survives_corrupt_record(self, student_service, sample_student, hub, db_session):
        """Test that an undecryptable record does not fail the whole list."""
        row = (
            await db_session.execute(select(Student).where(Student.id == sample_student.id))
        ).scalar_one()
        row.first_name_encrypted = "00" * 16 + ":" + "00" * 16 + ":abcd"
        await db_session.commit()

        results = await student_service.list_students_for_hub(hub.hub_id)

        assert results[0].first_name is None
        assert results[0].last_name == "Okafor"

    @pytest.mark.asyncio
    async def test_get_student(self, student_service, sample_student, services):
        """Test single lookup and its audit entry."""
        result = await student_service.get_student(sample_student.id)

        assert result.student_code == sample_student.student_code
        page = services.audit.get_audit_logs(AuditLogFilters(action="view"))
        assert any(entry.resource_id == sample_student.id for entry in page.logs)

    @pytest.mark.asyncio
    async def test_get_missing_student(self, student_service):
        """Test that unknown ids raise StudentNotFoundError."""
        with pytest.raises(StudentNotFoundError):
            await student_service.get_student("missing")

    @pytest.mark.asyncio
    async def test_stats(self, student_service, hub):
        """Test counts, average age and grade distribution."""
        await student_service.create_student(hub.hub_id, StudentCreateRequest(grade="4", age=9))
        await student_service.create_student(hub.hub_id, StudentCreateRequest(grade="4", age=10))
        last = await student_service.create_student(hub.hub_id, StudentCreateRequest(grade="6", age=12))
        await student_service.deactivate_student(last.id)

        stats = await student_service.get_student_stats()

        assert stats.total_students == 3
        assert stats.active_students == 2
        assert stats.inactive_students == 1
        assert stats.average_age == pytest.approx(10.3)
        assert stats.grade_distribution == {"4": 2, "6": 1}


class TestStudentServiceUpdate:
    """Tests for updates."""

    @pytest.mark.asyncio
    async def test_update_only_set_fields(self, student_service, sample_student):
        """Test that unset fields are left alone."""
        result = await student_service.update_student(
            sample_student.id, StudentUpdateRequest(first_name="Ama")
        )

        assert result.first_name == "Ama"
        assert result.last_name == "Okafor"
        assert result.grade == "5"

    @pytest.mark.asyncio
    async def test_update_clears_explicit_none(self, student_service, sample_student):
        """Test that an explicit None clears a field."""
        result = await student_service.update_student(
            sample_student.id, StudentUpdateRequest(last_name=None)
        )

        assert result.last_name is None

    @pytest.mark.asyncio
    async def test_update_invalid_age(self, student_service, sample_student):
        """Test that updates re-validate the age."""
        with pytest.raises(StudentValidationError):
            await student_service.update_student(sample_student.id, StudentUpdateRequest(age=40))

    @pytest.mark.asyncio
    async def test_update_audit_lists_fields(self, student_service, sample_student, services):
        """Test that the audit entry names the changed fields only."""
        await student_service.update_student(
            sample_student.id, StudentUpdateRequest(grade="6", age=11)
        )

        page = services.audit.get_audit_logs(AuditLogFilters(action="update"))
        assert page.logs[0].details["updated_fields"] == ["grade", "age"]


class TestStudentAuthentication:
    """Tests for student code login."""

    @pytest.mark.asyncio
    async def test_valid_code(self, student_service, sample_student, services):
        """Test that an active student's code authenticates."""
        result = await student_service.authenticate_student(sample_student.student_code)

        assert result is not None
        assert result.id == sample_student.id

        page = services.audit.get_audit_logs(AuditLogFilters(resource="authentication"))
        assert page.logs[0].success is True
        assert sample_student.student_code not in page.logs[0].model_dump_json()

    @pytest.mark.asyncio
    async def test_malformed_code(self, student_service, services):
        """Test that malformed codes fail without a lookup."""
        assert await student_service.authenticate_student("1abc") is None

        page = services.audit.get_audit_logs(AuditLogFilters(resource="authentication"))
        assert page.logs[0].success is False

    @pytest.mark.asyncio
    async def test_denied_caller_is_audited(self, student_service, services):
        """Test that a denied login is recorded before the error propagates."""
        with pytest.raises(AccessDeniedError):
            await student_service.authenticate_student(
                "ABCD", AccessContext(user_type=UserType.ADMIN)
            )

        page = services.audit.get_audit_logs(
            AuditLogFilters(resource="authentication", success=False)
        )
        assert page.total == 1
        assert "ABCD" not in page.logs[0].model_dump_json()

    @pytest.mark.asyncio
    async def test_inactive_student_cannot_log_in(self, student_service, sample_student):
        """Test that deactivated students are rejected."""
        await student_service.deactivate_student(sample_student.id)

        assert await student_service.validate_student_code(sample_student.student_code) is None


class TestStudentGdpr:
    """Tests for export and erasure."""

    @pytest.mark.asyncio
    async def test_export(self, student_service, sample_student, services, admin_context):
        """Test that admins can export with GDPR audit flags."""
        export = await student_service.export_student_data(sample_student.id, admin_context)

        assert export.student.first_name == "Amara"
        assert "Article 20" in export.compliance_note

        page = services.audit.get_audit_logs(AuditLogFilters(action="export"))
        assert page.logs[0].compliance_flags == ["GDPR", "DATA_EXPORT"]

    @pytest.mark.asyncio
    async def test_system_cannot_export(self, student_service, sample_student, system_context):
        """Test that only admins may export."""
        with pytest.raises(AccessDeniedError):
            await student_service.export_student_data(sample_student.id, system_context)

    @pytest.mark.asyncio
    async def test_delete_blocked_by_retention(self, student_service, sample_student, admin_context):
        """Test that recent records need an explicit GDPR request."""
        with pytest.raises(StudentRetentionError):
            await student_service.delete_student_data(
                sample_student.id, "cleanup", admin_context
            )

        assert await student_service.get_student(sample_student.id)

    @pytest.mark.asyncio
    async def test_delete_with_gdpr_request(self, student_service, sample_student, services, admin_context):
        """Test that a GDPR request erases the record."""
        result = await student_service.delete_student_data(
            sample_student.id, "GDPR_REQUEST from guardian", admin_context
        )

        assert result.deleted is True
        with pytest.raises(StudentNotFoundError):
            await student_service.get_student(sample_student.id)

        page = services.audit.get_audit_logs(AuditLogFilters(action="delete", success=True))
        assert page.logs[0].compliance_flags == ["GDPR", "RIGHT_TO_BE_FORGOTTEN"]

    @pytest.mark.asyncio
    async def test_expired_record_deleted_without_request(
        self, student_service, sample_student, admin_context
    ):
        """Test that records past retention can be deleted for any reason."""
        later = utc_now() + timedelta(days=4 * 365)

        with patch("src.domains.governance.access_control.utc_now", return_value=later):
            result = await student_service.delete_student_data(
                sample_student.id, "retention cleanup", admin_context
            )

        assert result.deleted is True


class TestEndToEnd:
    """Create, read back and audit a student as a hub would."""

    @pytest.mark.asyncio
    async def test_create_then_read(self, student_service, services, hub):
        """Test the round trip seen by a hub operator."""
        created = await student_service.create_student(
            hub.hub_id,
            StudentCreateRequest(first_name="Kofi", last_name="Mensah", grade="3", age=10),
            AccessContext.system(),
        )

        fetched = await student_service.get_student(created.id)

        assert fetched.first_name == "Kofi"
        assert fetched.last_name == "Mensah"

        report = services.audit.get_compliance_report(hub.hub_id)
        assert report.total_events == 2
        assert report.sensitive_data_events == 2
        assert report.compliance_flags == {"COPPA": 2, "GDPR": 2}

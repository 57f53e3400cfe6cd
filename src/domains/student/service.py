# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Student service for the hub student registry.

This module provides the StudentService that handles:
- Student CRUD with encrypted names and metadata
- Unique, child-friendly student codes
- COPPA age validation and GDPR export/erasure
- Access enforcement and audit logging for every operation

Every governed operation enforces access first, performs the change, and
reports the outcome to the audit log. Failures are audited and re-raised.

Example:
    >>> students = StudentService(db, services)
    >>> student = await students.create_student("hub-1", StudentCreateRequest(first_name="Ada", age=10))
    >>> student.student_code
    'KX7P'
"""

import json
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.container import GovernanceServices
from src.domains.governance.access_control import AccessDeniedError, AgeValidation
from src.domains.governance.rules import AccessContext, UserType
from src.domains.hub.service import HubService
from src.domains.security.codes import CodeConflictError, CodeKind, validate_code_format
from src.domains.security.encryption import DecryptionError
from src.infrastructure.database.models import Student
from src.models.student import (
    StudentCreateRequest,
    StudentDeletionResult,
    StudentExport,
    StudentResponse,
    StudentStats,
    StudentUpdateRequest,
)
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

MIN_STUDENT_AGE = 3
MAX_STUDENT_AGE = 18
GDPR_REQUEST_MARKER = "GDPR_REQUEST"


class StudentServiceError(Exception):
    """Base exception for student service errors."""

    pass


class StudentNotFoundError(StudentServiceError):
    """Raised when a student is not found."""

    pass


class StudentValidationError(StudentServiceError):
    """Raised when student data fails validation (age, COPPA)."""

    pass


class StudentLimitExceededError(StudentServiceError):
    """Raised when a hub or bulk request exceeds its student limit."""

    pass


class StudentRetentionError(StudentServiceError):
    """Raised when the retention policy forbids deleting a student."""

    pass


class StudentService:
    """Service for managing students on edge hubs.

    Attributes:
        _db: Async database session.
        _security: Field encryption.
        _access: Access control service.
        _audit: Audit logger.
        _codes: Unique code allocation.
        _hubs: Hub lookups.
    """

    def __init__(self, db: AsyncSession, services: GovernanceServices) -> None:
        """Initialize the student service.

        Args:
            db: Async database session.
            services: Shared governance services.
        """
        self._db = db
        self._security = services.security
        self._access = services.access_control
        self._audit = services.audit
        self._codes = services.codes
        self._limits = services.registry
        self._hubs = HubService(db, services)

    # =========================================================================
    # Create
    # =========================================================================

    async def create_student(
        self,
        hub_id: str,
        request: StudentCreateRequest,
        context: AccessContext | None = None,
    ) -> StudentResponse:
        """Create a student on a hub.

        Args:
            hub_id: Hub the student belongs to.
            request: Student data; names and metadata are encrypted.
            context: Caller context, defaults to the system context.

        Returns:
            The created student with names decrypted.

        Raises:
            AccessDeniedError: If the caller may not create students.
            HubNotFoundError: If the hub is not registered.
            StudentValidationError: If the age is invalid or not COPPA compliant.
            StudentLimitExceededError: If the hub is full.
            CodeGenerationExhaustedError: If no unique code could be found.
        """
        context = (context or AccessContext.system()).with_hub(hub_id)

        try:
            self._access.enforce_access(context, "student", "create")
            await self._hubs.require_hub(hub_id)
            coppa = self._validate_age(request.age, required=True)

            existing = await self._count(hub_id=hub_id)
            if existing >= self._limits.max_students_per_hub:
                raise StudentLimitExceededError(
                    f"Maximum student count per hub ({self._limits.max_students_per_hub}) exceeded"
                )

            student = await self._insert_with_code(hub_id, request)
            await self._db.commit()
            await self._db.refresh(student)
        except Exception as e:
            self._audit.log_student_data_access(
                context,
                action="create",
                student_id="unknown",
                success=False,
                error_message=str(e),
            )
            raise

        self._audit.log_student_data_access(
            context,
            action="create",
            student_id=student.id,
            success=True,
            details={
                "student_code": student.student_code,
                "has_first_name": bool(request.first_name),
                "has_last_name": bool(request.last_name),
                "grade": request.grade,
                "age": request.age,
                "coppa_compliant": coppa.compliant,
                "requires_parental_consent": coppa.requires_parental_consent,
            },
        )
        logger.info("Student created: %s (hub=%s)", student.id, hub_id)

        return self._to_response(student)

    async def bulk_create_students(
        self,
        hub_id: str,
        requests: list[StudentCreateRequest],
        context: AccessContext | None = None,
    ) -> list[StudentResponse]:
        """Create several students on a hub.

        All records are validated before any is inserted, and the batch is
        committed as a whole: if one insert fails, none of them is kept.

        Raises:
            StudentLimitExceededError: If the batch or the hub total is too large.
            StudentValidationError: If any age is invalid.
            CodeGenerationExhaustedError: If no unique code could be found.
        """
        context = (context or AccessContext.system()).with_hub(hub_id)
        created: list[Student] = []

        try:
            self._access.enforce_access(context, "student", "create")
            await self._hubs.require_hub(hub_id)

            if len(requests) > self._limits.max_students_per_bulk:
                raise StudentLimitExceededError(
                    f"Cannot create more than {self._limits.max_students_per_bulk} students at once"
                )

            existing = await self._count(hub_id=hub_id)
            if existing + len(requests) > self._limits.max_students_per_hub:
                raise StudentLimitExceededError(
                    f"Total student count per hub cannot exceed {self._limits.max_students_per_hub}"
                )

            for request in requests:
                self._validate_age(request.age, required=False)

            async with self._db.begin_nested():
                for request in requests:
                    created.append(await self._insert_with_code(hub_id, request))
            await self._db.commit()
            for student in created:
                await self._db.refresh(student)
        except Exception as e:
            self._audit.log_student_data_access(
                context,
                action="create",
                student_id="multiple",
                success=False,
                error_message=str(e),
                details={"students_requested": len(requests), "students_created": 0},
            )
            raise

        self._audit.log_student_data_access(
            context,
            action="create",
            student_id="multiple",
            success=True,
            details={"students_created": len(created)},
        )
        return [self._to_response(student) for student in created]

    # =========================================================================
    # Read
    # =========================================================================

    async def list_students_for_hub(
        self,
        hub_id: str,
        context: AccessContext | None = None,
    ) -> list[StudentResponse]:
        """List a hub's students, newest first.

        A record whose ciphertext cannot be decrypted is returned with empty
        name fields instead of failing the whole list.
        """
        context = (context or AccessContext.system()).with_hub(hub_id)

        try:
            self._access.enforce_access(context, "student", "view")
            stmt = (
                select(Student)
                .where(Student.hub_id == hub_id)
                .order_by(Student.created_at.desc())
            )
            result = await self._db.execute(stmt)
            students = list(result.scalars().all())
        except Exception as e:
            self._audit.log_student_data_access(
                context,
                action="view",
                student_id="multiple",
                success=False,
                error_message=str(e),
            )
            raise

        self._audit.log_student_data_access(
            context,
            action="view",
            student_id="multiple",
            success=True,
            details={"students_retrieved": len(students)},
        )
        return [self._to_response(student) for student in students]

    async def get_student(
        self,
        student_id: str,
        context: AccessContext | None = None,
    ) -> StudentResponse:
        """Get a single student.

        Raises:
            StudentNotFoundError: If the student does not exist.
            AccessDeniedError: If the caller may not view students.
        """
        context = context or AccessContext.system()

        try:
            student = await self._require(student_id)
            context = context.with_hub(student.hub_id)
            self._access.enforce_access(context, "student", "view", student_id)
        except Exception as e:
            self._audit.log_student_data_access(
                context,
                action="view",
                student_id=student_id,
                success=False,
                error_message=str(e),
            )
            raise

        self._audit.log_student_data_access(
            context, action="view", student_id=student_id, success=True
        )
        return self._to_response(student)

    async def validate_student_code(self, student_code: str) -> StudentResponse | None:
        """Return the active student with this code, or None.

        Malformed codes are rejected without a database lookup.
        """
        if not validate_code_format(CodeKind.STUDENT, student_code):
            return None

        stmt = select(Student).where(
            Student.student_code == student_code,
            Student.status == "active",
        )
        result = await self._db.execute(stmt)
        student = result.scalar_one_or_none()
        return self._to_response(student) if student else None

    async def authenticate_student(
        self,
        student_code: str,
        context: AccessContext | None = None,
    ) -> StudentResponse | None:
        """Look up an active student by code for a device login.

        The attempt is audited without storing the code itself.
        """
        context = context or AccessContext(user_type=UserType.ANONYMOUS)

        try:
            self._access.enforce_access(context, "student", "authenticate")
        except AccessDeniedError as e:
            self._audit.log_authentication_attempt(
                identifier_type="student",
                identifier=student_code,
                action="login",
                success=False,
                error_message=str(e),
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                hub_id=context.hub_id,
            )
            raise

        student = await self.validate_student_code(student_code)

        self._audit.log_authentication_attempt(
            identifier_type="student",
            identifier=student_code,
            action="login",
            success=student is not None,
            error_message=None if student else "Invalid student code",
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            hub_id=student.hub_id if student else context.hub_id,
        )
        return student

    async def get_student_stats(self) -> StudentStats:
        """Registry-wide counts, average age and grade distribution."""
        total = await self._count()
        active = await self._count(status="active")
        inactive = await self._count(status="inactive")

        avg_result = await self._db.execute(
            select(func.avg(Student.age)).where(Student.age.is_not(None))
        )
        avg_age = avg_result.scalar()
        average_age = round(float(avg_age), 1) if avg_age is not None else 0.0

        grade_result = await self._db.execute(
            select(Student.grade, func.count())
            .where(Student.grade.is_not(None))
            .group_by(Student.grade)
        )
        distribution = {grade: int(count) for grade, count in grade_result.all()}

        return StudentStats(
            total_students=total,
            active_students=active,
            inactive_students=inactive,
            average_age=average_age,
            grade_distribution=distribution,
        )

    # =========================================================================
    # Update
    # =========================================================================

    async def update_student(
        self,
        student_id: str,
        request: StudentUpdateRequest,
        context: AccessContext | None = None,
    ) -> StudentResponse:
        """Apply the fields set on ``request`` to a student.

        Raises:
            StudentNotFoundError: If the student does not exist.
            AccessDeniedError: If the caller may not update students.
            StudentValidationError: If the new age is invalid.
        """
        context = context or AccessContext.system()
        fields = request.model_fields_set
        updated_fields: list[str] = []

        try:
            student = await self._require(student_id)
            context = context.with_hub(student.hub_id)
            self._access.enforce_access(context, "student", "update", student_id)

            if "age" in fields and request.age is not None:
                self._validate_age(request.age, required=True)

            if "first_name" in fields:
                student.first_name_encrypted = self._encrypt_name(request.first_name)
                updated_fields.append("first_name")
            if "last_name" in fields:
                student.last_name_encrypted = self._encrypt_name(request.last_name)
                updated_fields.append("last_name")
            if "grade" in fields:
                student.grade = (request.grade or "").strip() or None
                updated_fields.append("grade")
            if "age" in fields:
                student.age = request.age
                updated_fields.append("age")
            if "metadata" in fields:
                student.metadata_encrypted = self._encrypt_metadata(request.metadata)
                updated_fields.append("metadata")
            if "status" in fields and request.status is not None:
                student.status = request.status
                updated_fields.append("status")

            await self._db.commit()
            await self._db.refresh(student)
        except Exception as e:
            self._audit.log_student_data_access(
                context,
                action="update",
                student_id=student_id,
                success=False,
                error_message=str(e),
            )
            raise

        self._audit.log_student_data_access(
            context,
            action="update",
            student_id=student_id,
            success=True,
            details={
                "updated_fields": updated_fields,
                "new_age": request.age if "age" in fields else None,
                "new_status": request.status if "status" in fields else None,
            },
        )
        return self._to_response(student)

    async def deactivate_student(
        self,
        student_id: str,
        context: AccessContext | None = None,
    ) -> StudentResponse:
        """Mark a student inactive; inactive students cannot log in."""
        return await self.update_student(
            student_id, StudentUpdateRequest(status="inactive"), context
        )

    # =========================================================================
    # GDPR
    # =========================================================================

    async def export_student_data(
        self,
        student_id: str,
        context: AccessContext,
    ) -> StudentExport:
        """Export everything stored about a student (GDPR Article 20).

        Raises:
            StudentNotFoundError: If the student does not exist.
            AccessDeniedError: If the caller may not export students.
        """
        hub_id: str | None = None

        try:
            student = await self._require(student_id)
            hub_id = student.hub_id
            context = context.with_hub(hub_id)
            self._access.enforce_access(context, "student", "export", student_id)
            exported = self._to_response(student)
        except Exception as e:
            self._audit.log_data_export(
                context,
                export_type="student_data",
                resource_ids=[student_id],
                hub_id=hub_id or "unknown",
                success=False,
                error_message=str(e),
            )
            raise

        self._audit.log_data_export(
            context,
            export_type="student_data",
            resource_ids=[student_id],
            hub_id=hub_id,
            success=True,
        )
        return StudentExport(
            student=exported,
            exported_at=utc_now(),
            compliance_note="Data exported in compliance with GDPR Article 20 (Right to data portability)",
        )

    async def delete_student_data(
        self,
        student_id: str,
        reason: str,
        context: AccessContext,
    ) -> StudentDeletionResult:
        """Erase a student (GDPR Article 17).

        Records inside their retention window are only deleted when the
        reason contains ``GDPR_REQUEST``.

        Raises:
            StudentNotFoundError: If the student does not exist.
            AccessDeniedError: If the caller may not delete students.
            StudentRetentionError: If the retention policy forbids deletion.
        """
        hub_id: str | None = None

        try:
            student = await self._require(student_id)
            hub_id = student.hub_id
            context = context.with_hub(hub_id)
            self._access.enforce_access(context, "student", "delete", student_id)

            retention = self._access.should_retain_data("student", student.updated_at, student.age)
            if retention.retain and GDPR_REQUEST_MARKER not in reason:
                raise StudentRetentionError(f"Cannot delete: {retention.reason}")

            await self._db.delete(student)
            await self._db.commit()
        except Exception as e:
            self._audit.log_data_deletion(
                context,
                deletion_type="student_data",
                resource_ids=[student_id],
                reason=reason,
                hub_id=hub_id or "unknown",
                success=False,
                error_message=str(e),
            )
            raise

        self._audit.log_data_deletion(
            context,
            deletion_type="student_data",
            resource_ids=[student_id],
            reason=reason,
            hub_id=hub_id,
            success=True,
        )
        logger.info("Student %s deleted (hub=%s)", student_id, hub_id)

        return StudentDeletionResult(
            deleted=True,
            message="Student data permanently deleted in compliance with GDPR Article 17 (Right to erasure)",
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate_age(self, age: int | None, required: bool) -> AgeValidation:
        """Check the accepted age range, then COPPA when ``required``."""
        if age is not None and not MIN_STUDENT_AGE <= age <= MAX_STUDENT_AGE:
            raise StudentValidationError(
                f"Student age must be between {MIN_STUDENT_AGE} and {MAX_STUDENT_AGE}"
            )

        coppa = self._access.validate_student_age(age)
        if required and not coppa.compliant:
            raise StudentValidationError(
                f"COPPA compliance issue: {', '.join(coppa.warnings)}"
            )
        return coppa

    async def _insert_with_code(self, hub_id: str, request: StudentCreateRequest) -> Student:
        """Flush a new student under a fresh code; the caller commits.

        Each attempt runs in its own savepoint so a lost code race only
        undoes that one row.
        """
        first_name = self._encrypt_name(request.first_name)
        last_name = self._encrypt_name(request.last_name)
        metadata = self._encrypt_metadata(request.metadata)

        async def persist(code: str) -> Student:
            student = Student(
                hub_id=hub_id,
                student_code=code,
                first_name_encrypted=first_name,
                last_name_encrypted=last_name,
                grade=(request.grade or "").strip() or None,
                age=request.age,
                metadata_encrypted=metadata,
                status="active",
            )
            try:
                async with self._db.begin_nested():
                    self._db.add(student)
            except IntegrityError as e:
                if await self._student_code_exists(code):
                    raise CodeConflictError(code) from e
                raise
            return student

        return await self._codes.assign_unique_code(
            CodeKind.STUDENT, self._student_code_exists, persist
        )

    async def _student_code_exists(self, code: str) -> bool:
        result = await self._db.execute(
            select(Student.id).where(Student.student_code == code)
        )
        return result.first() is not None

    async def _require(self, student_id: str) -> Student:
        result = await self._db.execute(select(Student).where(Student.id == student_id))
        student = result.scalar_one_or_none()
        if student is None:
            raise StudentNotFoundError("Student not found")
        return student

    async def _count(self, hub_id: str | None = None, status: str | None = None) -> int:
        stmt = select(func.count()).select_from(Student)
        if hub_id is not None:
            stmt = stmt.where(Student.hub_id == hub_id)
        if status is not None:
            stmt = stmt.where(Student.status == status)
        result = await self._db.execute(stmt)
        return result.scalar() or 0

    def _encrypt_name(self, value: str | None) -> str | None:
        if not value or not value.strip():
            return None
        return self._security.encrypt(value.strip())

    def _encrypt_metadata(self, metadata: dict | None) -> str | None:
        if not metadata:
            return None
        return self._security.encrypt(json.dumps(metadata))

    def _decrypt_field(self, student: Student, column: str) -> str | None:
        token = getattr(student, column)
        if not token:
            return None
        try:
            return self._security.decrypt(token)
        except DecryptionError:
            logger.error("Failed to decrypt %s for student %s", column, student.id)
            return None

    def _to_response(self, student: Student) -> StudentResponse:
        metadata_json = self._decrypt_field(student, "metadata_encrypted")
        metadata = None
        if metadata_json:
            try:
                metadata = json.loads(metadata_json)
            except json.JSONDecodeError:
                logger.error("Stored metadata for student %s is not valid JSON", student.id)

        return StudentResponse(
            id=student.id,
            hub_id=student.hub_id,
            student_code=student.student_code,
            first_name=self._decrypt_field(student, "first_name_encrypted"),
            last_name=self._decrypt_field(student, "last_name_encrypted"),
            grade=student.grade,
            age=student.age,
            metadata=metadata,
            status=student.status,
            created_at=student.created_at,
            updated_at=student.updated_at,
        )

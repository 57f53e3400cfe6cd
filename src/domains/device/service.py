# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Device service for the hub device registry.

Admins create device slots on a hub; each slot gets a pairing code that a
classroom tablet uses to register itself. Slots move through the states
pending -> active -> inactive.

Example:
    >>> devices = DeviceService(db, services)
    >>> created = await devices.create_devices_for_hub("hub-1", 3, admin)
    >>> await devices.register_device(created[0].device_code, {"model": "Tab A"})
"""

import json
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.container import GovernanceServices
from src.domains.governance.access_control import AccessDeniedError
from src.domains.governance.rules import AccessContext, UserType
from src.domains.hub.service import HubService
from src.domains.security.codes import CodeConflictError, CodeKind, validate_code_format
from src.domains.security.encryption import CODE_ALPHABET, DEVICE_CODE_MIN_LENGTH
from src.infrastructure.database.models import Device
from src.models.device import DeviceCodeStats, DeviceResponse, HubDeviceStats
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

MAX_DEVICE_INFO_LENGTH = 4096


class DeviceServiceError(Exception):
    """Base exception for device service errors."""

    pass


class DeviceNotFoundError(DeviceServiceError):
    """Raised when a device is not found."""

    pass


class DeviceLimitExceededError(DeviceServiceError):
    """Raised when a request or hub exceeds its device limit."""

    pass


class DeviceStateError(DeviceServiceError):
    """Raised when an operation is not allowed in the device's state."""

    pass


class DeviceService:
    """Service for managing device slots on edge hubs.

    Attributes:
        _db: Async database session.
        _access: Access control service.
        _audit: Audit logger.
        _codes: Unique code allocation.
        _hubs: Hub lookups.
    """

    def __init__(self, db: AsyncSession, services: GovernanceServices) -> None:
        self._db = db
        self._access = services.access_control
        self._audit = services.audit
        self._codes = services.codes
        self._limits = services.registry
        self._hubs = HubService(db, services)

    # =========================================================================
    # Provisioning
    # =========================================================================

    async def create_devices_for_hub(
        self,
        hub_id: str,
        count: int,
        context: AccessContext | None = None,
    ) -> list[DeviceResponse]:
        """Create ``count`` pending device slots with unique codes.

        The slots are committed together; if one cannot be created, none is.

        Raises:
            AccessDeniedError: If the caller may not create devices.
            HubNotFoundError: If the hub is not registered.
            DeviceLimitExceededError: If count or the hub total is out of range.
            CodeGenerationExhaustedError: If no unique code could be found.
        """
        context = (context or AccessContext.system()).with_hub(hub_id)
        created: list[Device] = []

        try:
            self._access.enforce_access(context, "device", "create")
            await self._hubs.require_hub(hub_id)

            max_per_request = self._limits.max_devices_per_request
            if count < 1 or count > max_per_request:
                raise DeviceLimitExceededError(
                    f"Device count must be between 1 and {max_per_request}"
                )

            existing = await self._count(hub_id=hub_id)
            if existing + count > self._limits.max_devices_per_hub:
                raise DeviceLimitExceededError(
                    f"Total device count per hub cannot exceed {self._limits.max_devices_per_hub}"
                )

            async with self._db.begin_nested():
                for _ in range(count):
                    created.append(await self._insert_with_code(hub_id))
            await self._db.commit()
            for device in created:
                await self._db.refresh(device)
        except Exception as e:
            self._audit.log_device_operation(
                context,
                action="create",
                success=False,
                error_message=str(e),
                details={"requested": count, "devices_created": 0},
            )
            raise

        self._audit.log_device_operation(
            context,
            action="create",
            success=True,
            details={"devices_created": len(created)},
        )
        logger.info("Created %d devices for hub %s", len(created), hub_id)

        return [self._to_response(device) for device in created]

    async def regenerate_device_code(
        self,
        device_id: str,
        context: AccessContext | None = None,
    ) -> DeviceResponse:
        """Give a device a fresh code and reset it to pending.

        The old code stops working immediately; the tablet has to register
        again with the new one.
        """
        context = context or AccessContext.system()
        old_code: str | None = None

        try:
            device = await self._require(device_id)
            old_code = device.device_code
            context = context.with_hub(device.hub_id)
            self._access.enforce_access(context, "device", "update", device_id)

            async def persist(code: str) -> Device:
                try:
                    async with self._db.begin_nested():
                        device.device_code = code
                        device.status = "pending"
                        device.registered_at = None
                        device.last_seen = None
                except IntegrityError as e:
                    if await self._device_code_exists(code):
                        raise CodeConflictError(code) from e
                    raise
                return device

            device = await self._codes.assign_unique_code(
                CodeKind.DEVICE, self._device_code_exists, persist
            )
            await self._db.commit()
            await self._db.refresh(device)
        except Exception as e:
            self._audit.log_device_operation(
                context,
                action="update",
                success=False,
                device_id=device_id,
                error_message=str(e),
            )
            raise

        self._audit.log_device_operation(
            context,
            action="update",
            success=True,
            device_id=device.id,
            device_code=device.device_code,
            details={"regenerated": True, "old_code_length": len(old_code or "")},
        )
        return self._to_response(device)

    async def deactivate_device(
        self,
        device_id: str,
        context: AccessContext | None = None,
    ) -> DeviceResponse:
        """Mark a device inactive so it can be removed."""
        context = context or AccessContext.system()

        try:
            device = await self._require(device_id)
            context = context.with_hub(device.hub_id)
            self._access.enforce_access(context, "device", "update", device_id)

            device.status = "inactive"
            await self._db.commit()
            await self._db.refresh(device)
        except Exception as e:
            self._audit.log_device_operation(
                context,
                action="update",
                success=False,
                device_id=device_id,
                error_message=str(e),
            )
            raise

        self._audit.log_device_operation(
            context,
            action="update",
            success=True,
            device_id=device.id,
            details={"new_status": "inactive"},
        )
        return self._to_response(device)

    async def remove_device(
        self,
        device_id: str,
        context: AccessContext,
    ) -> None:
        """Delete a device slot.

        Raises:
            DeviceNotFoundError: If the device does not exist.
            AccessDeniedError: If the caller may not delete devices.
            DeviceStateError: If the device is registered and active.
        """
        try:
            device = await self._require(device_id)
            context = context.with_hub(device.hub_id)
            self._access.enforce_access(context, "device", "delete", device_id)

            if device.status == "active" and device.registered_at is not None:
                raise DeviceStateError(
                    "Cannot delete registered device. Please deactivate first."
                )

            await self._db.delete(device)
            await self._db.commit()
        except Exception as e:
            self._audit.log_device_operation(
                context,
                action="delete",
                success=False,
                device_id=device_id,
                error_message=str(e),
            )
            raise

        self._audit.log_device_operation(
            context, action="delete", success=True, device_id=device_id
        )
        logger.info("Device %s removed", device_id)

    # =========================================================================
    # Pairing
    # =========================================================================

    async def register_device(
        self,
        device_code: str,
        device_info: dict | None = None,
        context: AccessContext | None = None,
    ) -> DeviceResponse:
        """Pair a tablet with the slot holding ``device_code``.

        Raises:
            AccessDeniedError: If the caller may not register devices.
            DeviceNotFoundError: If no slot has this code.
        """
        context = context or AccessContext(user_type=UserType.ANONYMOUS)

        try:
            self._access.enforce_access(context, "device", "register")

            device = await self._get_by_code(device_code)
            if device is None:
                raise DeviceNotFoundError("Device not found")

            now = utc_now()
            device.status = "active"
            device.registered_at = now
            device.last_seen = now
            if device_info:
                info = json.dumps(device_info)
                if len(info) > MAX_DEVICE_INFO_LENGTH:
                    raise DeviceServiceError("Device info too large")
                device.device_info = info

            await self._db.commit()
            await self._db.refresh(device)
        except Exception as e:
            self._audit.log_device_operation(
                context,
                action="register",
                success=False,
                device_code=device_code,
                error_message=str(e),
            )
            raise

        self._audit.log_device_operation(
            context,
            action="register",
            success=True,
            device_id=device.id,
            hub_id=device.hub_id,
            details={"has_device_info": bool(device_info)},
        )
        logger.info("Device %s registered on hub %s", device.id, device.hub_id)

        return self._to_response(device)

    async def update_last_seen(self, device_id: str) -> None:
        """Record a heartbeat from a registered device."""
        device = await self._require(device_id)
        device.last_seen = utc_now()
        await self._db.commit()

        self._audit.log_device_operation(
            AccessContext.system(device.hub_id),
            action="heartbeat",
            success=True,
            device_id=device_id,
        )

    async def validate_device_code(
        self,
        device_code: str,
        context: AccessContext | None = None,
    ) -> DeviceResponse | None:
        """Return the device holding ``device_code``, or None.

        Malformed codes are rejected without a database lookup. The attempt
        is audited without storing the code.
        """
        context = context or AccessContext(user_type=UserType.ANONYMOUS)

        try:
            self._access.enforce_access(context, "device", "validate")
        except AccessDeniedError as e:
            self._audit.log_authentication_attempt(
                identifier_type="device",
                identifier=device_code,
                action="validate",
                success=False,
                error_message=str(e),
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                hub_id=context.hub_id,
            )
            raise

        device = None
        if validate_code_format(CodeKind.DEVICE, device_code):
            device = await self._get_by_code(device_code)

        self._audit.log_authentication_attempt(
            identifier_type="device",
            identifier=device_code,
            action="validate",
            success=device is not None,
            error_message=None if device else "Invalid device code",
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            hub_id=device.hub_id if device else context.hub_id,
        )
        return self._to_response(device) if device else None

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_devices_for_hub(
        self,
        hub_id: str,
        context: AccessContext | None = None,
    ) -> list[DeviceResponse]:
        """List a hub's devices, newest first."""
        context = (context or AccessContext.system()).with_hub(hub_id)

        try:
            self._access.enforce_access(context, "device", "view")
        except AccessDeniedError as e:
            self._audit.log_device_operation(
                context, action="view", success=False, error_message=str(e)
            )
            raise

        stmt = select(Device).where(Device.hub_id == hub_id).order_by(Device.created_at.desc())
        result = await self._db.execute(stmt)
        return [self._to_response(device) for device in result.scalars().all()]

    async def get_device(
        self,
        device_id: str,
        context: AccessContext | None = None,
    ) -> DeviceResponse:
        """Get a single device.

        Raises:
            DeviceNotFoundError: If the device does not exist.
            AccessDeniedError: If the caller may not view the device.
        """
        context = context or AccessContext.system()
        device = await self._require(device_id)
        context = context.with_hub(device.hub_id)

        try:
            self._access.enforce_access(context, "device", "view", device_id)
        except AccessDeniedError as e:
            self._audit.log_device_operation(
                context,
                action="view",
                success=False,
                device_id=device_id,
                error_message=str(e),
            )
            raise
        return self._to_response(device)

    async def get_hub_device_stats(self, hub_id: str) -> HubDeviceStats:
        """Device counts by status for one hub."""
        return HubDeviceStats(
            total=await self._count(hub_id=hub_id),
            active=await self._count(hub_id=hub_id, status="active"),
            pending=await self._count(hub_id=hub_id, status="pending"),
            inactive=await self._count(hub_id=hub_id, status="inactive"),
        )

    async def get_device_code_stats(self) -> DeviceCodeStats:
        """Registry-wide code usage.

        The collision rate is the share of the shortest code space already
        taken, as a percentage with two decimals.
        """
        total = await self._count()
        code_space = len(CODE_ALPHABET) ** DEVICE_CODE_MIN_LENGTH

        return DeviceCodeStats(
            total_codes=total,
            active_devices=await self._count(status="active"),
            pending_devices=await self._count(status="pending"),
            inactive_devices=await self._count(status="inactive"),
            code_collision_rate=round(total / code_space * 100, 2),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _insert_with_code(self, hub_id: str) -> Device:
        """Flush a new pending device in its own savepoint; the caller commits."""

        async def persist(code: str) -> Device:
            device = Device(hub_id=hub_id, device_code=code, status="pending")
            try:
                async with self._db.begin_nested():
                    self._db.add(device)
            except IntegrityError as e:
                if await self._device_code_exists(code):
                    raise CodeConflictError(code) from e
                raise
            return device

        return await self._codes.assign_unique_code(
            CodeKind.DEVICE, self._device_code_exists, persist
        )

    async def _device_code_exists(self, code: str) -> bool:
        result = await self._db.execute(select(Device.id).where(Device.device_code == code))
        return result.first() is not None

    async def _get_by_code(self, device_code: str) -> Device | None:
        result = await self._db.execute(select(Device).where(Device.device_code == device_code))
        return result.scalar_one_or_none()

    async def _require(self, device_id: str) -> Device:
        result = await self._db.execute(select(Device).where(Device.id == device_id))
        device = result.scalar_one_or_none()
        if device is None:
            raise DeviceNotFoundError("Device not found")
        return device

    async def _count(self, hub_id: str | None = None, status: str | None = None) -> int:
        stmt = select(func.count()).select_from(Device)
        if hub_id is not None:
            stmt = stmt.where(Device.hub_id == hub_id)
        if status is not None:
            stmt = stmt.where(Device.status == status)
        result = await self._db.execute(stmt)
        return result.scalar() or 0

    def _to_response(self, device: Device) -> DeviceResponse:
        device_info = None
        if device.device_info:
            try:
                device_info = json.loads(device.device_info)
            except json.JSONDecodeError:
                logger.warning("Stored device info for %s is not valid JSON", device.id)

        return DeviceResponse(
            id=device.id,
            hub_id=device.hub_id,
            device_code=device.device_code,
            name=device.name,
            status=device.status,
            registered_at=device.registered_at,
            last_seen=device.last_seen,
            device_info=device_info,
            created_at=device.created_at,
            updated_at=device.updated_at,
        )

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Hub service for the edge hub registry.

Students and devices are scoped to a hub; the registries call
require_hub() before creating records.

Example:
    >>> hubs = HubService(db, services)
    >>> hub = await hubs.create_hub(HubCreateRequest(hub_id="hub-1", name="Kibera"), admin)
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.container import GovernanceServices
from src.domains.governance.access_control import AccessDeniedError
from src.domains.governance.rules import AccessContext
from src.infrastructure.database.models import EdgeHub
from src.models.hub import HubCreateRequest, HubResponse

logger = logging.getLogger(__name__)


class HubServiceError(Exception):
    """Base exception for hub service errors."""

    pass


class HubNotFoundError(HubServiceError):
    """Raised when a hub is not registered."""

    pass


class HubExistsError(HubServiceError):
    """Raised when registering a hub id twice."""

    pass


class HubService:
    """Service for registering and looking up edge hubs.

    Attributes:
        _db: Async database session.
        _access: Access control service.
        _audit: Audit logger.
    """

    def __init__(self, db: AsyncSession, services: GovernanceServices) -> None:
        self._db = db
        self._access = services.access_control
        self._audit = services.audit

    async def create_hub(self, request: HubCreateRequest, context: AccessContext) -> HubResponse:
        """Register a hub (admin only).

        Raises:
            AccessDeniedError: If the caller may not manage hubs.
            HubExistsError: If the hub id is already registered.
        """
        context = context.with_hub(request.hub_id)
        try:
            self._access.enforce_access(context, "hub", "manage", request.hub_id)

            if await self._get_by_hub_id(request.hub_id) is not None:
                raise HubExistsError(f"Hub '{request.hub_id}' already exists")

            hub = EdgeHub(hub_id=request.hub_id, name=request.name, status="active")
            self._db.add(hub)
            await self._db.commit()
            await self._db.refresh(hub)
        except Exception as e:
            self._audit.log_event(
                user_id=context.user_id,
                user_type=context.user_type,
                action="create",
                resource="hub",
                resource_id=request.hub_id,
                hub_id=request.hub_id,
                success=False,
                error_message=str(e),
            )
            raise

        self._audit.log_event(
            user_id=context.user_id,
            user_type=context.user_type,
            action="create",
            resource="hub",
            resource_id=hub.hub_id,
            hub_id=hub.hub_id,
            success=True,
        )
        logger.info("Hub registered: %s", hub.hub_id)
        return self._to_response(hub)

    async def get_hub(self, hub_id: str, context: AccessContext) -> HubResponse:
        """Return a hub the caller is allowed to view.

        Raises:
            AccessDeniedError: If the caller may not view the hub.
            HubNotFoundError: If the hub is not registered.
        """
        scoped = context if context.hub_id else context.with_hub(hub_id)
        try:
            self._access.enforce_access(scoped, "hub", "view", hub_id)
            if not self._access.can_access_hub(scoped, hub_id):
                raise AccessDeniedError("Hub access denied", "hub", "view")
        except AccessDeniedError as e:
            self._audit.log_event(
                user_id=context.user_id,
                user_type=context.user_type,
                action="view",
                resource="hub",
                resource_id=hub_id,
                hub_id=hub_id,
                success=False,
                error_message=str(e),
            )
            raise
        return self._to_response(await self.require_hub(hub_id))

    async def hub_exists(self, hub_id: str) -> bool:
        """Check registration without access control (internal callers)."""
        return await self._get_by_hub_id(hub_id) is not None

    async def require_hub(self, hub_id: str) -> EdgeHub:
        """Load a hub or raise HubNotFoundError."""
        hub = await self._get_by_hub_id(hub_id)
        if hub is None:
            raise HubNotFoundError("Hub not found")
        return hub

    async def _get_by_hub_id(self, hub_id: str) -> EdgeHub | None:
        result = await self._db.execute(select(EdgeHub).where(EdgeHub.hub_id == hub_id))
        return result.scalar_one_or_none()

    def _to_response(self, hub: EdgeHub) -> HubResponse:
        return HubResponse(
            id=hub.id,
            hub_id=hub.hub_id,
            name=hub.name,
            status=hub.status,
            created_at=hub.created_at,
        )

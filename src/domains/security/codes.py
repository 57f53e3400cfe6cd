# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unique device and student code allocation.

Codes are short, drawn from an unambiguous alphabet, and unique across all
hubs. Allocation retries on collision, grows the code length after repeated
collisions, and backs off between late attempts.

Two entry points are provided:
- generate_unique_code(): existence check only; the caller persists.
- assign_unique_code(): existence check followed by a persist callback.
  A CodeConflictError raised by the callback (a unique-constraint violation
  on the code column) is treated as a collision and retried, so concurrent
  callers cannot end up sharing a code.

Example:
    >>> generator = CodeGenerator(security)
    >>> code = await generator.generate_unique_code(CodeKind.DEVICE, device_code_exists)
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from src.domains.security.encryption import (
    CODE_ALPHABET,
    DEVICE_CODE_MAX_LENGTH,
    DEVICE_CODE_MIN_LENGTH,
    STUDENT_CODE_MAX_LENGTH,
    STUDENT_CODE_MIN_LENGTH,
    SecurityService,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ExistsCheck = Callable[[str], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[None]]


class CodeKind(str, Enum):
    """Kinds of generated codes with their allocation lengths."""

    DEVICE = "device"
    STUDENT = "student"

    @property
    def start_length(self) -> int:
        """Length of the first candidates."""
        return DEVICE_CODE_MIN_LENGTH if self is CodeKind.DEVICE else 4

    @property
    def min_length(self) -> int:
        """Shortest code accepted by validation."""
        return DEVICE_CODE_MIN_LENGTH if self is CodeKind.DEVICE else STUDENT_CODE_MIN_LENGTH

    @property
    def max_length(self) -> int:
        """Longest code accepted by validation."""
        return DEVICE_CODE_MAX_LENGTH if self is CodeKind.DEVICE else STUDENT_CODE_MAX_LENGTH


_ALPHABET_CLASS = f"[{CODE_ALPHABET}]"
_LETTER_CLASS = f"[{''.join(ch for ch in CODE_ALPHABET if ch.isalpha())}]"

_CODE_PATTERNS: dict[CodeKind, re.Pattern[str]] = {
    CodeKind.DEVICE: re.compile(
        rf"^{_ALPHABET_CLASS}{{{DEVICE_CODE_MIN_LENGTH},{DEVICE_CODE_MAX_LENGTH}}}$"
    ),
    CodeKind.STUDENT: re.compile(
        rf"^{_LETTER_CLASS}{_ALPHABET_CLASS}"
        rf"{{{STUDENT_CODE_MIN_LENGTH - 1},{STUDENT_CODE_MAX_LENGTH - 1}}}$"
    ),
}


class CodeGenerationError(Exception):
    """Base exception for code allocation."""

    pass


class CodeGenerationExhaustedError(CodeGenerationError):
    """Raised when no unique code was found within the attempt budget.

    Attributes:
        kind: Kind of code being allocated.
        attempts: Number of candidates tried.
    """

    def __init__(self, kind: CodeKind, attempts: int) -> None:
        super().__init__(f"Unable to generate unique {kind.value} code after {attempts} attempts")
        self.kind = kind
        self.attempts = attempts


class CodeConflictError(CodeGenerationError):
    """Raised by a persist callback when the code was taken concurrently."""

    pass


def validate_code_format(kind: CodeKind, code: str | None) -> bool:
    """Check a code against the alphabet and length rules for its kind."""
    if not code:
        return False
    return _CODE_PATTERNS[kind].fullmatch(code) is not None


class CodeGenerator:
    """Allocates codes that are unique across the whole registry.

    Attempts 1-5 use the start length for the kind, attempts 6-10 one more
    character and attempts 11-15 two more. From the fourth collision on,
    the generator sleeps ``10ms * collisions`` before the next candidate.

    Attributes:
        _security: Source of random candidates.
        _sleep: Awaitable used for back-off (injectable for tests).
    """

    MAX_ATTEMPTS = 15
    LENGTH_STEP_ATTEMPTS = (5, 10)
    BACKOFF_AFTER_ATTEMPTS = 3
    BACKOFF_UNIT_SECONDS = 0.01

    def __init__(self, security: SecurityService, sleep: Sleep | None = None) -> None:
        """Initialize the generator.

        Args:
            security: SecurityService producing random candidates.
            sleep: Back-off coroutine, defaults to asyncio.sleep.
        """
        self._security = security
        self._sleep = sleep or asyncio.sleep

    def candidate(self, kind: CodeKind, length: int) -> str:
        """Produce one random candidate of the given kind and length."""
        if kind is CodeKind.DEVICE:
            return self._security.generate_device_code(length)
        return self._security.generate_student_code(length)

    async def generate_unique_code(self, kind: CodeKind, exists: ExistsCheck) -> str:
        """Return a code for which ``exists`` reports no match.

        The check-then-save window is not protected; use assign_unique_code()
        when the code has to be persisted.

        Raises:
            CodeGenerationExhaustedError: After MAX_ATTEMPTS collisions.
        """

        async def _accept(code: str) -> str:
            return code

        return await self.assign_unique_code(kind, exists, _accept)

    async def assign_unique_code(
        self,
        kind: CodeKind,
        exists: ExistsCheck,
        persist: Callable[[str], Awaitable[T]],
    ) -> T:
        """Find a free code and hand it to ``persist``.

        Args:
            kind: Kind of code to allocate.
            exists: Async check for an existing record with the code.
            persist: Async callback storing the record; raises
                CodeConflictError if the code was taken meanwhile.

        Returns:
            Whatever ``persist`` returns.

        Raises:
            CodeGenerationExhaustedError: After MAX_ATTEMPTS collisions.
        """
        attempts = 0
        length = kind.start_length

        while attempts < self.MAX_ATTEMPTS:
            code = self.candidate(kind, length)

            if not await exists(code):
                try:
                    return await persist(code)
                except CodeConflictError:
                    logger.info("Code %s was taken concurrently, retrying", code)

            attempts += 1

            if attempts in self.LENGTH_STEP_ATTEMPTS:
                length = min(length + 1, kind.max_length)
                logger.debug("Growing %s code length to %d", kind.value, length)

            if attempts > self.BACKOFF_AFTER_ATTEMPTS and attempts < self.MAX_ATTEMPTS:
                await self._sleep(self.BACKOFF_UNIT_SECONDS * attempts)

        logger.error("Exhausted %d attempts allocating a %s code", attempts, kind.value)
        raise CodeGenerationExhaustedError(kind, attempts)

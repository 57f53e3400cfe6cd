# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer for the EdgeHub governance core.

Domains:
    security: Field encryption, hashing and unique code allocation.
    governance: Access rules, compliance policies and the audit log.
    hub: Edge hub registration and lookup.
    student: Student registry with encrypted PII and GDPR operations.
    device: Device slots, pairing codes and registration.
"""

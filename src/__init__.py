"""EdgeHub governance core.

Security, access control and audit services for the student and device
registries of offline classroom edge hubs.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"

# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Core package for the EdgeHub governance core.

This package contains:
- config: Application configuration and settings
- container: Construction of the shared governance services
"""

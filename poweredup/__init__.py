# SPDX-License-Identifier: MIT
# Copyright (c) 2023 The Pybricks Authors

"""Asyncio client for LEGO Powered Up hubs using the LEGO Wireless Protocol v3."""

from importlib.metadata import version

try:
    __version__ = version(__name__)
except Exception:  # pragma: no cover
    pass

del version

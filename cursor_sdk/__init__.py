# cursor_sdk/__init__.py
# SPDX-License-Identifier: Apache-2.0
"""
Cursor SDK

Resumable, duplicate-free result iteration over a remote vector database.
See ``cursor_sdk.vector`` for the public iteration API.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]

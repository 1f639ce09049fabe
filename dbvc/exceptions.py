"""
Exception classes for the database version control engine.

This module defines the root of every exception raised by the package.
"""

from typing import Optional, Dict, Any


class DBVCError(Exception):
    """Base exception for all database version control errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class SettingsError(DBVCError):
    """Exception raised for invalid process settings."""
    pass

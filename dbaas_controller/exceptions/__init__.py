"""
Custom exceptions for the DBaaS controller.

Every failure surfaced by the controller derives from DBaaSException so that
callers (and the debug server) can report it uniformly.
"""
from typing import Optional, Dict, Any
from fastapi import status


class DBaaSException(Exception):
    """
    Base exception for all controller errors.

    All custom exceptions should inherit from this base class.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(DBaaSException):
    """
    Raised when caller parameters are malformed.

    Used for unparsable quantities, missing names, invalid sizes, etc.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class BuildValidationError(ValidationError):
    """
    Raised when a custom resource document cannot be built consistently.

    Covers unknown schema generations, inconsistent role specs and
    forbidden image changes. Always raised before any platform contact.
    """


class NotFoundError(DBaaSException):
    """
    Raised when an object is absent from the platform.

    This is the distinguished NotFound value; it is never used for other I/O failures.
    """

    def __init__(self, resource: str, name: str, details: Optional[Dict[str, Any]] = None):
        message = f"{resource} '{name}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details or {"resource": resource, "name": name},
        )
        self.resource = resource
        self.name = name


class AlreadyExistsError(DBaaSException):
    """Raised when creating a cluster whose name is already in use."""

    def __init__(self, resource: str, name: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Cluster '{name}' already exists",
            status_code=status.HTTP_409_CONFLICT,
            details=details or {"resource": resource, "name": name},
        )


class NotReadyError(DBaaSException):
    """
    Raised when an operation requires a Ready cluster.

    Used for updates and credential lookups against a still-converging cluster.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class VersionResolutionError(DBaaSException):
    """Raised when the version matrix is empty, ambiguous or unparsable."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
        )


class PlatformError(DBaaSException):
    """
    Raised when a platform call fails for a reason other than NotFound.

    Carries the attempted command and the diagnostic text the platform returned.
    """

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        stderr: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.command = command
        self.stderr = stderr
        merged = dict(details or {})
        if command:
            merged["command"] = command
        if stderr:
            merged["stderr"] = stderr
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=merged,
        )


class SessionError(PlatformError):
    """Raised when an API bridge session cannot be opened or released."""


__all__ = [
    "DBaaSException",
    "ValidationError",
    "BuildValidationError",
    "NotFoundError",
    "AlreadyExistsError",
    "NotReadyError",
    "VersionResolutionError",
    "PlatformError",
    "SessionError",
]

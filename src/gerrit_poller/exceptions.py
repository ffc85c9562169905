"""
Custom exceptions for the Gerrit poller.

This module defines the error taxonomy used across the client: configuration
mistakes made by callers, failed review-service API calls, and credential
source failures.
"""

from typing import Any


class GerritPollerError(Exception):
    """Base exception for Gerrit poller errors."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code or "GERRIT_POLLER_ERROR"
        self.context = context or {}


class ConfigurationError(GerritPollerError):
    """Exception for configuration related errors."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, code or "CONFIGURATION_ERROR", context)


class InstanceNotFoundError(ConfigurationError):
    """Raised when a targeted call names an instance with no registered handler."""

    def __init__(self, instance: str, context: dict[str, Any] | None = None):
        super().__init__(
            f"instance handler for {instance!r} not found, "
            "it might not have been initialized yet",
            "INSTANCE_NOT_FOUND",
            context,
        )
        self.instance = instance


class ProjectNotFoundError(ConfigurationError):
    """Raised when a targeted call names a project the instance does not watch."""

    def __init__(
        self, instance: str, project: str, context: dict[str, Any] | None = None
    ):
        super().__init__(
            f"project {project!r} from instance {instance!r} not registered in "
            "gerrit handler, it might not have been initialized yet",
            "PROJECT_NOT_FOUND",
            context,
        )
        self.instance = instance
        self.project = project


class ClientUpdateError(ConfigurationError):
    """Aggregate of the per-instance failures from one reconfiguration."""

    def __init__(self, errors: list[Exception]):
        message = "; ".join(str(e) for e in errors)
        if len(errors) > 1:
            message = f"[{message}]"
        super().__init__(message, "CLIENT_UPDATE_ERROR")
        self.errors = errors


class GerritAPIError(GerritPollerError):
    """Exception for review-service API related errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        if response_body:
            message = f"{message}, response body: {response_body!r}"
        super().__init__(message, "GERRIT_API_ERROR", context)
        self.status_code = status_code
        self.response_body = response_body


class AuthenticationError(GerritPollerError):
    """Exception for authentication related errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "AUTHENTICATION_ERROR", context)


class CredentialSourceError(AuthenticationError):
    """Raised when the configured credential file cannot be read."""

"""Shared error types for the forge package.

Every error carries a stable ``code`` so the presentation layer can branch on
the kind of failure without parsing messages.
"""

from typing import Any


class ForgeError(Exception):
    """Base exception for forge errors.

    Use this (or a subclass) for failures that should reach the user with an
    actionable message.
    """

    code = "FORGE_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {"name": type(self).__name__, "code": self.code, "message": self.message}


class ValidationError(ForgeError):
    """Input is malformed or the entity is in the wrong state for the operation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class NotFoundError(ForgeError):
    """A looked-up entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["entity"] = self.entity
        data["id"] = self.entity_id
        return data


class DuplicateExecutionError(ForgeError):
    """An active execution already exists for the version."""

    code = "DUPLICATE"

    def __init__(self, version_id: str, execution_id: str) -> None:
        super().__init__(
            f"Version {version_id} already has an active execution: {execution_id}"
        )
        self.version_id = version_id
        self.execution_id = execution_id


class PlanFileNotFoundError(ForgeError):
    """A file read through the file system adapter does not exist."""

    code = "FILE_NOT_FOUND"

    def __init__(self, path: str) -> None:
        super().__init__(f"File not found: {path}")
        self.path = path


class ConfigurationError(ForgeError):
    """Configuration file or environment value is missing or invalid."""

    code = "CONFIGURATION_ERROR"


class GitError(ForgeError):
    """A git command failed."""

    code = "GIT_ERROR"

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"git {operation} failed: {message}")
        self.operation = operation


class AgentError(ForgeError):
    """The AI agent could not be invoked or returned unparseable output."""

    code = "AGENT_ERROR"

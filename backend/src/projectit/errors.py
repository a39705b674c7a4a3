"""Error taxonomy for the entity store and its access overlay.

Every classified error carries the HTTP status it maps to. The API layer
turns them into ``{"error": message}`` responses without further lookup.
"""


class ProjectITError(Exception):
    """Base class for errors with an explicit status classification."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidEntityType(ProjectITError):
    """Entity type is not in the whitelist."""

    status_code = 400

    def __init__(self, entity_type: str):
        super().__init__(f"Invalid entity type: {entity_type}")
        self.entity_type = entity_type


class InvalidFilter(ProjectITError):
    """Filter, sort or limit could not be translated."""

    status_code = 400


class InvalidPayload(ProjectITError):
    """Entity payload or patch is not a JSON object."""

    status_code = 400


class AuthRequired(ProjectITError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AccessDenied(ProjectITError):
    status_code = 403

    def __init__(self, message: str = "Access denied: not a member of this project"):
        super().__init__(message)


class NotFound(ProjectITError):
    status_code = 404

    def __init__(self, message: str = "Record not found"):
        super().__init__(message)


class TransactionFailure(ProjectITError):
    """A transactional operation failed and was rolled back."""

    status_code = 500

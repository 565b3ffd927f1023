"""Exceptions for rolesync."""


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class RoleSyncError(Exception):
    """
    Base exception for all rolesync errors.

    All exceptions raised by this package inherit from this class,
    allowing callers to catch all package-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(RoleSyncError):
    """
    Raised when required configuration is missing or invalid.

    This is the only fatal error: the CLI exits with status 1.

    Attributes:
        missing: Names of the missing settings (may be empty for invalid values)
    """

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        self.missing = missing or []
        super().__init__(message)


# ---------------------------------------------------------------------------
# Lookup Exceptions
# ---------------------------------------------------------------------------


class RecordNotFoundError(RoleSyncError, LookupError):
    """Raised when a record is not found in the store."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Record not found: {key}")


class EntityNotFoundError(RoleSyncError, LookupError):
    """Raised when a member is not found in the directory."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"Entity not found: {entity_id}")


# ---------------------------------------------------------------------------
# Permission Exceptions
# ---------------------------------------------------------------------------


class TagPermissionError(RoleSyncError, PermissionError):
    """
    Raised when the acting identity cannot mutate a tag.

    The applier drops the tag from the operation set and continues.
    """

    def __init__(self, tag_id: str, reason: str = "not permitted") -> None:
        self.tag_id = tag_id
        self.reason = reason
        super().__init__(f"Cannot mutate tag {tag_id}: {reason}")


# ---------------------------------------------------------------------------
# Transient Exceptions
# ---------------------------------------------------------------------------


class TransientAPIError(RoleSyncError):
    """
    Base exception for temporarily unreachable collaborators.

    The current task is abandoned; the next change event or sweep
    restores consistency. Nothing retries internally.

    Attributes:
        cause: The underlying exception, if any
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class DirectoryUnavailable(TransientAPIError):  # noqa: N818
    """Raised when the directory (Discord) cannot be reached."""

    pass


class StoreUnavailable(TransientAPIError):  # noqa: N818
    """Raised when the record store (DynamoDB) cannot be reached."""

    pass


class PartialMutationError(RoleSyncError):
    """
    Raised when a multi-tag mutation fails after some tags were applied.

    Attributes:
        entity_id: Member being mutated
        applied: Tags that were mutated before the failure
        cause: The error that stopped the remaining tags
    """

    def __init__(self, entity_id: str, applied: list[str], cause: RoleSyncError) -> None:
        self.entity_id = entity_id
        self.applied = applied
        self.cause = cause
        super().__init__(f"{cause} (after applying {', '.join(applied)})")


# ---------------------------------------------------------------------------
# Record validation
# ---------------------------------------------------------------------------


class MalformedRecordError(RoleSyncError, ValueError):
    """
    Raised when a record field fails validation.

    Never escapes the desired-state computer, which omits the affected
    tag instead.
    """

    def __init__(self, key: str, field: str, value: object, reason: str) -> None:
        self.key = key
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Record {key}: field {field!r}={value!r} {reason}")

"""Domain errors raised by repositories, services and the storage layer."""


class OwnershipError(PermissionError):
    """An entity was addressed by a user that does not own it."""

    def __init__(self, entity: str, message: str | None = None) -> None:
        self.entity = entity
        super().__init__(message or f"{entity} does not belong to the specified user")


class ImportFileError(ValueError):
    """The uploaded import file cannot be processed at all.

    Carries field-level messages that end up in ``Import.validation_errors``.
    Jobs failing with this error are not retried.
    """

    def __init__(self, message: str, errors: dict[str, list[str]] | None = None) -> None:
        self.errors = errors or {}
        super().__init__(message)


class StorageError(OSError):
    """The storage backend failed to read, write or delete an artifact."""


class CacheError(RuntimeError):
    """The cache backend is unreachable or returned an error."""


"""Error taxonomy for the transfer and storage core.

Every error carries the HTTP status the API layer should answer with and a
client-safe message. Details that should not reach clients go to the log.
"""


class DropError(Exception):
    """Base class for all core errors."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)

    @property
    def detail(self) -> str:
        return str(self)


class NotFoundError(DropError):
    """Unknown record ID or storage identifier."""
    status_code = 404
    public_message = "Not found"


class PersistenceError(DropError):
    """The record database rejected a read or write."""
    status_code = 500
    public_message = "Internal server error"

    @property
    def detail(self) -> str:
        # Never leak driver messages to clients
        return self.public_message


class StorageError(DropError):
    """Storage backend failed to persist, open or delete a blob."""
    status_code = 500
    public_message = "Storage failure"


class DiskFullError(StorageError):
    status_code = 507
    public_message = "The disk is full"


class StorageIOError(StorageError):
    public_message = "Storage failure"


class TransferInterruptedError(DropError):
    """A transfer stalled below the minimum throughput and was aborted."""
    status_code = 408
    public_message = "Transfer interrupted: connection too slow, please retry"


class ValidationError(DropError):
    """Request rejected before any storage or record operation."""
    status_code = 400
    public_message = "Invalid request"


class PayloadTooLargeError(ValidationError):
    status_code = 413
    public_message = "File is too big"


class BannedMimeTypeError(ValidationError):
    status_code = 415
    public_message = "This kind of file is not accepted"


class IdSpaceExhaustedError(DropError):
    """No unused short ID could be found. Fatal configuration error."""
    status_code = 500
    public_message = "Internal server error"


class DuplicateRecordError(PersistenceError):
    """A record with the same ID was committed first."""

"""Domain exceptions."""


class HRSyncError(Exception):
    """Base class for errors raised by hrsync services."""


class ThreadNotFoundError(HRSyncError):
    """A conversation thread does not exist (or was deleted)."""

    def __init__(self, thread_id: str, owner_identity: str):
        super().__init__(f"Conversation thread {thread_id} not found for {owner_identity}")
        self.thread_id = thread_id
        self.owner_identity = owner_identity


class ThreadConflictError(HRSyncError):
    """A conversation thread was saved by another writer since it was read."""

    def __init__(self, thread_id: str, owner_identity: str):
        super().__init__(f"Conversation thread {thread_id} of {owner_identity} was modified concurrently")
        self.thread_id = thread_id
        self.owner_identity = owner_identity


class DeletionRequestNotFoundError(HRSyncError):
    """No deletion request with the given id exists for the identity."""


class DeletionRequestConflictError(HRSyncError):
    """The identity already has a pending deletion request."""

    def __init__(self, message: str, existing_request_id: str):
        super().__init__(message)
        self.existing_request_id = existing_request_id


class InvalidDeletionTransitionError(HRSyncError):
    """A deletion request was asked to leave a state it cannot leave."""


class GatewayError(HRSyncError):
    """The external HR system rejected or failed a request."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code

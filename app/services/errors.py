"""
Exceptions raised by the collaboration store and the notification engine.
"""
from typing import Optional


class CollaborationError(Exception):
    """Base class for every domain error the API translates into a JSON envelope."""
    code = "COLLABORATION_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotAuthenticatedError(CollaborationError):
    code = "NOT_AUTHENTICATED"
    status_code = 401

    def __init__(self, message: str = "User is not authenticated"):
        super().__init__(message)


# Store errors

class StoreError(CollaborationError):
    code = "STORE_ERROR"
    status_code = 500


class RecordNotFoundError(StoreError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, collection: str, record_id: str):
        super().__init__(f"{collection} record {record_id} not found")
        self.collection = collection
        self.record_id = record_id


class PermissionDeniedError(StoreError):
    code = "PERMISSION_DENIED"
    status_code = 403


class InvitationStateError(StoreError):
    """The invitation already left the pending state."""
    code = "INVITATION_NOT_PENDING"
    status_code = 409


class InvitationRejectedError(StoreError):
    """A new invitation failed validation (self-invite, duplicate, ...)."""
    code = "INVITATION_REJECTED"
    status_code = 400


class StoreUnavailableError(StoreError):
    code = "STORE_UNAVAILABLE"
    status_code = 503


# Engine errors

class SubscriptionError(CollaborationError):
    """A live query failed. Held in the feed state, never raised into the aggregator."""
    code = "SUBSCRIPTION_ERROR"
    status_code = 503

    def __init__(self, source: str, cause: BaseException):
        super().__init__(f"[{source}] {cause}")
        self.source = source
        self.cause = cause


class ActionFailedError(CollaborationError):
    """A store write issued on behalf of one feed item failed."""
    code = "ACTION_FAILED"
    status_code = 502

    def __init__(self, action: str, item_id: Optional[str], cause: BaseException):
        target = item_id if item_id is not None else "feed"
        super().__init__(f"{action} failed for {target}: {cause}")
        self.action = action
        self.item_id = item_id
        self.cause = cause

"""
Error taxonomy for the object access-control layer.

Callers only ever see these types. Storage-backend exceptions are translated
into them by ObjectAccessService and never escape it.
"""


class ObjectAccessError(Exception):
    """Base class for access-control layer failures."""
    pass


class BackendUnavailableError(ObjectAccessError):
    """
    Object storage cannot serve the request.
    
    Usually a configuration problem (no bucket or private directory set)
    rather than a transient fault, so it is reported immediately and
    never retried here.
    """
    pass


class ObjectNotFoundError(ObjectAccessError):
    """The requested object does not exist in the backing store."""
    
    def __init__(self, path: str) -> None:
        super().__init__(f"Object not found: {path}")
        self.path = path


class AccessDeniedError(ObjectAccessError):
    """The policy was evaluated and the requester lacks the permission."""
    
    def __init__(self, path: str) -> None:
        super().__init__(f"Access denied: {path}")
        self.path = path


class MalformedPolicyError(ObjectAccessError):
    """Stored policy metadata could not be decoded."""
    pass

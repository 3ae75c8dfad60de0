class FeedError(Exception):
    pass


class TransientFetchError(FeedError):
    """Network failure or timeout talking to the note store."""


class AuthorizationError(FeedError):
    """The store rejected the request; surfaced as not found / not yours."""


class ValidationError(FeedError, ValueError):
    pass


class StorageError(FeedError):
    """Signed URL issuance failed for a single object."""


class ExternalAIError(RuntimeError):
    pass

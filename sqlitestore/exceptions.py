"""Exceptions raised by the session store."""


class SessionStoreError(Exception):
    """Base class for session store failures"""


class SessionNotFoundError(SessionStoreError):
    """No row exists for the session id"""


class SessionExpiredError(SessionStoreError):
    """The row exists but its expiry timestamp has passed"""


class InvalidSessionIdError(SessionStoreError):
    """The session id is not a valid row key"""


class SessionEncryptionError(SessionStoreError):
    """Raised when session data encryption fails"""


class SessionDecodeError(SessionStoreError):
    """Raised when a stored body or cookie value cannot be decoded"""

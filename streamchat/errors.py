from __future__ import annotations

from typing import Optional


class ChatClientError(Exception):
    """Base class for everything the client raises on purpose."""


class AuthError(ChatClientError):
    """Credentials are missing, rejected, or could not be refreshed.

    Whoever raises this has already cleared the stored tokens.
    """

    def __init__(self, message: str = "Authentication failed, please login again"):
        super().__init__(message)


class InvalidSessionError(AuthError):
    def __init__(self, message: str = "Invalid user data received, please login again"):
        super().__init__(message)


class HttpError(ChatClientError):
    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        self.message = message or f"API request failed with status {status}"
        super().__init__(self.message)


class DecodeError(ChatClientError):
    pass


class NetworkError(ChatClientError):
    pass

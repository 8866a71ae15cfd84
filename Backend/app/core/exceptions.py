# app/core/exceptions.py
"""
Custom exceptions for the application.
"""
from typing import Optional, Dict, Any


class CapyCodeError(Exception):
    """Base exception for all CapyCode errors."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthenticationError(CapyCodeError):
    """A bearer token could not be resolved to a user."""
    pass


class MissingTokenError(AuthenticationError):
    """No token was supplied, or it was not a bearer token."""
    def __init__(self, message: str = "Missing or invalid authorization header"):
        super().__init__(message)


class InvalidTokenError(AuthenticationError):
    """The identity provider rejected the token."""
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class IdentityProviderError(AuthenticationError):
    """The identity provider call itself failed (network, timeout, bad status)."""
    def __init__(self, reason: str):
        super().__init__("Token verification failed", {"reason": reason})
        self.reason = reason


class ProtocolError(CapyCodeError):
    """Inbound realtime payload could not be parsed."""
    def __init__(self, message: str = "Invalid message format"):
        super().__init__(message)


class UnknownMessageTypeError(ProtocolError):
    """Inbound realtime payload carried an unrecognized type tag."""
    def __init__(self, message_type: Any):
        super().__init__(f"Unknown message type: {message_type!r}")
        self.message_type = message_type


class WebhookSignatureError(CapyCodeError):
    """Webhook signature did not match the configured secret."""
    def __init__(self, source: str):
        super().__init__(f"Invalid {source} webhook signature", {"source": source})
        self.source = source


class AccessError(CapyCodeError):
    """HTTP request rejected by the auth gate."""
    def __init__(self, status_code: int, error: str, message: str):
        super().__init__(message, {"error": error})
        self.status_code = status_code
        self.error = error

# app/core/__init__.py
"""
Core module - Application configuration, logging, and shared exceptions.
"""
from .config import settings, Settings
from .exceptions import (
    CapyCodeError,
    AuthenticationError,
    MissingTokenError,
    InvalidTokenError,
    IdentityProviderError,
    ProtocolError,
    UnknownMessageTypeError,
    WebhookSignatureError,
    AccessError,
)

__all__ = [
    # Config
    "settings",
    "Settings",
    # Exceptions
    "CapyCodeError",
    "AuthenticationError",
    "MissingTokenError",
    "InvalidTokenError",
    "IdentityProviderError",
    "ProtocolError",
    "UnknownMessageTypeError",
    "WebhookSignatureError",
    "AccessError",
]

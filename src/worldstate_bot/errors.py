"""
Exception hierarchy shared by every feed.

None of these are fatal to the process except ConfigurationError raised at
startup. The scheduler and reconciler are the only places that catch them.
"""

from __future__ import annotations

from typing import Optional


class WorldstateBotError(Exception):
    """Base exception for all worldstate-bot errors"""
    pass


class ConfigurationError(WorldstateBotError):
    """Raised at startup when required settings or lookup files are missing"""
    pass


class FetchError(WorldstateBotError):
    """Raised when the upstream snapshot cannot be retrieved or decoded"""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ClassificationError(WorldstateBotError):
    """Raised when a snapshot entry (or the feed's primary entity) cannot be classified"""
    pass


class DeliveryError(WorldstateBotError):
    """Raised when a message cannot be sent, edited or deleted"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class MessageNotFoundError(DeliveryError):
    """Raised when the referenced message (or its channel) no longer exists"""
    pass


class PersistenceError(WorldstateBotError):
    """Raised when the subscription store cannot be read or written"""
    pass

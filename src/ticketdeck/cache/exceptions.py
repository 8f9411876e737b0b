"""Custom exceptions for the Cache Store."""


class CacheError(Exception):
    """Base exception for Cache Store errors."""


class TicketNotFoundError(CacheError):
    """Ticket with given key is not cached."""


class EpicNotFoundError(CacheError):
    """Epic with given key is not cached."""

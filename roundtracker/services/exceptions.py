"""
Errors raised by the round services.
"""


class InvalidRoundQueryError(ValueError):
    """Listing request is malformed (sorting, paging or filter bounds)."""


class RoundDataAccessError(RuntimeError):
    """Reading sessions or observations from the store failed."""

"""
Exceptions raised by exchange collaborators.

Order placement and cancellation report failures in their response
objects; these cover the calls that have nothing to return instead.
"""


class ExchangeAPIError(Exception):
    """Base exception for all exchange errors"""

    pass


class NotConnectedError(ExchangeAPIError):
    """Raised when an operation needs a connection that is not open"""

    pass


class PriceUnavailableError(ExchangeAPIError):
    """Raised when no price is known for a symbol"""

    pass

"""
Domain errors raised by the trading services.

Routers translate these into HTTP responses; the scheduler logs them and moves on.
"""
from datetime import datetime
from typing import Optional


class TradingError(Exception):
    """Base error for rejected trading operations. Nothing is persisted when raised."""

    status_code = 400
    default_reason = "TRADING_ERROR"

    def __init__(self, message: str, reason_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason_code = reason_code or self.default_reason


class InvalidRequestError(TradingError):
    default_reason = "INVALID_REQUEST"


class InsufficientBalanceError(TradingError):
    default_reason = "INSUFFICIENT_BALANCE"

    def __init__(self, message: str = "Insufficient balance"):
        super().__init__(message)


class MarginFloorError(TradingError):
    default_reason = "MARGIN_FLOOR"

    def __init__(self, message: str = "Cannot remove that much margin, position would be at risk"):
        super().__init__(message)


class FaucetCooldownError(TradingError):
    default_reason = "FAUCET_COOLDOWN"

    def __init__(self, available_at: datetime, message: str = "Faucet cooldown not expired"):
        super().__init__(message)
        self.available_at = available_at


class PositionNotFoundError(TradingError):
    status_code = 404
    default_reason = "POSITION_NOT_FOUND"

    def __init__(self, message: str = "Position not found"):
        super().__init__(message)


class PositionClosedError(TradingError):
    default_reason = "POSITION_CLOSED"

    def __init__(self, message: str = "Position already closed"):
        super().__init__(message)


class PriceUnavailableError(TradingError):
    status_code = 503
    default_reason = "PRICE_UNAVAILABLE"

    def __init__(self, message: str = "Unable to get current price"):
        super().__init__(message)

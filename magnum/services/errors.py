# magnum/services/errors.py
"""Economy error taxonomy. ``code`` is what results carry in ``error``."""


class EconomyError(Exception):
    default_message = "Operation failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def code(self) -> str:
        return type(self).__name__


class ReserveUnavailable(EconomyError):
    default_message = "Exchange reserve is not available"


class MinimumAmountError(EconomyError):
    default_message = "Amount is below the minimum exchange amount"


class InsufficientFundsError(EconomyError):
    default_message = "Insufficient funds"


class InsufficientReserveError(EconomyError):
    default_message = "Not enough liquidity in the exchange reserve"


class UnsupportedPairError(EconomyError):
    default_message = "Unsupported currency pair"


class AlreadyActiveError(EconomyError):
    default_message = "Miner is already running"


class NotActiveError(EconomyError):
    default_message = "Miner is not running"


class UserNotFoundError(EconomyError):
    default_message = "User not found"


class InternalError(EconomyError):
    default_message = "Internal error, please try again later"

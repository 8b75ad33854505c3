"""Domain exceptions raised by the settlement and withdrawal services.

Routers translate these into HTTP responses. Expected, user-facing outcomes
such as rejected plays are returned as values and never raised.
"""


class SettlementError(Exception):
    """Base class for settlement failures."""


class SettlementFinalizedError(SettlementError):
    """The month is already finalized; finalized records are never rewritten."""


class SettlementInProgressError(SettlementError):
    """Another run for the same month holds the settlement lock."""


class SettlementNotFoundError(SettlementError):
    """No settlement exists for the requested month."""


class SettlementTimeoutError(SettlementError):
    """The run exceeded its time budget. Nothing was committed; safe to retry."""


class WithdrawalError(Exception):
    """Base class for withdrawal failures."""


class WithdrawalNotFoundError(WithdrawalError):
    pass


class InvalidWithdrawalTransitionError(WithdrawalError):
    pass


class InsufficientBalanceError(WithdrawalError):
    """The educator's finalized balance cannot cover the amount."""


class PendingWithdrawalExistsError(WithdrawalError):
    pass

# mlm_ledger/errors.py
"""
Ledger exceptions.

Expected business outcomes (insufficient funds, inactive account) are returned
as failure results; exceptions are for integrity problems and bad input.
"""


class LedgerError(Exception):
    """Base class for ledger errors."""


class ValidationError(LedgerError):
    """Malformed input, e.g. an amount that is not a number."""


class InsufficientFunds(LedgerError):
    def __init__(self, userId, slug, balance, amount):
        self.userId = userId
        self.slug = slug
        self.balance = balance
        self.amount = amount
        super().__init__(f"Insufficient funds in {slug} for user {userId}: balance {balance}, requested {amount}")


class UnknownWalletSlug(LedgerError):
    def __init__(self, slug):
        self.slug = slug
        super().__init__(f"Unknown wallet slug '{slug}'")


class UnknownUser(LedgerError):
    def __init__(self, userId):
        self.userId = userId
        super().__init__(f"Unknown user {userId}")


class CapReached(LedgerError):
    """Remaining cap is exhausted; distributors treat this as a skip."""

    def __init__(self, userId, remaining=None):
        self.userId = userId
        self.remaining = remaining
        super().__init__(f"Capping reached for user {userId}")


class ExternalGatewayFailure(LedgerError):
    """Transport error, timeout or unreadable answer from the payout gateway."""


class PartialMultiStepFailure(LedgerError):
    """Second leg of a transfer or conversion failed after the first was applied."""

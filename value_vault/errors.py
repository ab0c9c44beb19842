"""
Vault Error Taxonomy

Every rejected vault operation raises one of these. Each error carries the
amounts that explain the rejection so callers (and the HTTP layer) can
report the attempted value against the relevant limit.
"""

from typing import Any, Dict, Optional


class VaultError(ValueError):
    """Base class for all vault errors"""

    code = "vault_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses and logs"""
        result = {"error": self.code, "message": self.message}
        result.update(self.context)
        return result


class ZeroAmount(VaultError):
    code = "zero_amount"

    def __init__(self):
        super().__init__("Amount must be greater than zero")


class InvalidAmount(VaultError):
    """Amount is negative or not an integer number of base units"""

    code = "invalid_amount"

    def __init__(self, amount: Any):
        super().__init__(f"Amount must be a non-negative integer, got {amount!r}", amount=repr(amount))
        self.amount = amount


class InvalidConfiguration(VaultError):
    code = "invalid_configuration"

    def __init__(self, bank_cap: Any, withdraw_limit: Any, reason: Optional[str] = None):
        message = reason or "bank_cap and withdraw_limit must be positive integers"
        super().__init__(
            f"{message} (bank_cap={bank_cap!r}, withdraw_limit={withdraw_limit!r})",
            bank_cap=bank_cap,
            withdraw_limit=withdraw_limit
        )
        self.bank_cap = bank_cap
        self.withdraw_limit = withdraw_limit


class ExceedsBankCap(VaultError):
    code = "exceeds_bank_cap"

    def __init__(self, attempted: int, remaining: int):
        super().__init__(
            f"Deposit of {attempted} exceeds remaining bank capacity {remaining}",
            attempted=attempted,
            remaining=remaining
        )
        self.attempted = attempted
        self.remaining = remaining


class ExceedsWithdrawLimit(VaultError):
    code = "exceeds_withdraw_limit"

    def __init__(self, attempted: int, limit: int):
        super().__init__(
            f"Withdrawal of {attempted} exceeds per-withdrawal limit {limit}",
            attempted=attempted,
            limit=limit
        )
        self.attempted = attempted
        self.limit = limit


class InsufficientBalance(VaultError):
    code = "insufficient_balance"

    def __init__(self, attempted: int, balance: int):
        super().__init__(
            f"Insufficient balance: available {balance}, requested {attempted}",
            attempted=attempted,
            balance=balance
        )
        self.attempted = attempted
        self.balance = balance


class TransferFailed(VaultError):
    """The outbound value movement did not succeed; ledger effects were rolled back"""

    code = "transfer_failed"

    def __init__(self, recipient: str, amount: int, reason: Optional[str] = None):
        super().__init__(
            f"Transfer of {amount} to {recipient} failed: {reason or 'unknown reason'}",
            recipient=recipient,
            amount=amount,
            reason=reason
        )
        self.recipient = recipient
        self.amount = amount
        self.reason = reason


class DirectDepositNotAllowed(VaultError):
    code = "direct_deposit_not_allowed"

    def __init__(self, sender: Optional[str] = None, amount: Any = None):
        super().__init__(
            "Value must be sent through deposit; direct transfers are rejected",
            sender=sender,
            amount=amount
        )
        self.sender = sender
        self.amount = amount


class InvariantViolation(VaultError):
    code = "invariant_violation"

    def __init__(self, invariant: str, details: str):
        super().__init__(f"Ledger invariant {invariant} violated: {details}",
                         invariant=invariant, details=details)
        self.invariant = invariant
        self.details = details

"""
Vault Ledger Engine

Per-account value vault with a global capacity ceiling (bank cap) and a
per-operation withdrawal ceiling. Every mutating operation follows the
same order: validate, apply and persist the ledger effects, and only then
call the transfer executor. Re-entrant calls made by the executor therefore
see the already-updated balances.

A single re-entrant lock serializes deposits, withdrawals and reads, so
each operation is observed as one indivisible transaction.
"""

import threading
from dataclasses import dataclass, replace, astuple, asdict
from datetime import datetime, timezone
from typing import Dict, Optional, Any, Tuple

from .storage import StorageInterface, StorageRecord, InMemoryStorage
from .audit import AuditTrail, AuditEventType
from .events import EventDispatcher, EventPayload, VaultEvent
from .transfer import TransferExecutor, TransferResult, RecordingTransferExecutor
from .errors import (
    VaultError, ZeroAmount, InvalidAmount, InvalidConfiguration, ExceedsBankCap,
    ExceedsWithdrawLimit, InsufficientBalance, TransferFailed,
    DirectDepositNotAllowed, InvariantViolation
)
from .logging_config import get_logger, log_action


@dataclass
class VaultState(StorageRecord):
    """Persisted ledger aggregate (everything except per-account balances)"""
    bank_cap: int
    withdraw_limit: int
    deployer: str
    total_deposited: int = 0
    total_withdrawn: int = 0
    deposit_count: int = 0
    withdraw_count: int = 0


@dataclass(frozen=True)
class VaultStats:
    bank_cap: int
    withdraw_limit: int
    total_deposited: int
    total_withdrawn: int
    deposit_count: int
    withdraw_count: int

    def as_tuple(self) -> Tuple[int, int, int, int, int, int]:
        return astuple(self)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class DepositReceipt:
    account: str
    amount: int
    balance_after: int


@dataclass(frozen=True)
class WithdrawalReceipt:
    account: str
    amount: int
    balance_after: int
    transfer_reference: Optional[str] = None


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class VaultLedger:
    """
    Vault ledger owning all accounting state.

    Balances and aggregates live in memory and are written through to the
    storage backend in one transaction per change, so counters and balances
    never diverge on disk.
    """

    STATE_TABLE = "vault_state"
    STATE_ID = "ledger"
    BALANCE_TABLE = "vault_balances"

    def __init__(
        self,
        bank_cap: int,
        withdraw_limit: int,
        deployer: str,
        storage: Optional[StorageInterface] = None,
        transfer_executor: Optional[TransferExecutor] = None,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        """
        Create (or reopen) the vault ledger

        Args:
            bank_cap: Ceiling on total value ever deposited, > 0
            withdraw_limit: Ceiling on a single withdrawal, > 0
            deployer: Identity that created the ledger
            storage: Storage backend (in-memory when omitted)
            transfer_executor: Collaborator paying out withdrawals
            audit_trail: Optional hash-chained audit trail
            event_dispatcher: Dispatcher for Deposit/Withdrawal events

        Raises:
            InvalidConfiguration: If a limit is not a positive integer, or the
                storage already holds a ledger with different limits
        """
        if not (_is_positive_int(bank_cap) and _is_positive_int(withdraw_limit)):
            raise InvalidConfiguration(bank_cap, withdraw_limit)

        self.storage = storage or InMemoryStorage()
        self.transfer_executor = transfer_executor or RecordingTransferExecutor()
        self.audit_trail = audit_trail
        self.event_dispatcher = event_dispatcher or EventDispatcher()
        self.logger = get_logger("value_vault.vault")
        self._lock = threading.RLock()
        self._balances: Dict[str, int] = {}

        stored = self.storage.load(self.STATE_TABLE, self.STATE_ID)
        if stored:
            self._state = VaultState.from_dict(stored)
            if (self._state.bank_cap, self._state.withdraw_limit) != (bank_cap, withdraw_limit):
                raise InvalidConfiguration(
                    bank_cap, withdraw_limit,
                    reason=(f"stored ledger was created with bank_cap={self._state.bank_cap}, "
                            f"withdraw_limit={self._state.withdraw_limit}")
                )
            for row in self.storage.load_all(self.BALANCE_TABLE):
                self._balances[row['account']] = row['balance']
            log_action(self.logger, "info", "Vault ledger reopened",
                       account=self._state.deployer, action="open", resource="vault",
                       extra={"accounts": len(self._balances)})
        else:
            now = datetime.now(timezone.utc)
            self._state = VaultState(
                id=self.STATE_ID,
                created_at=now,
                updated_at=now,
                bank_cap=bank_cap,
                withdraw_limit=withdraw_limit,
                deployer=deployer
            )
            with self.storage.atomic():
                self.storage.save(self.STATE_TABLE, self.STATE_ID, self._state.to_dict())
            self._audit(AuditEventType.VAULT_CREATED, deployer, {
                "bank_cap": bank_cap,
                "withdraw_limit": withdraw_limit
            })
            log_action(self.logger, "info", "Vault ledger created",
                       account=deployer, action="create", resource="vault",
                       extra={"bank_cap": bank_cap, "withdraw_limit": withdraw_limit})

    @property
    def bank_cap(self) -> int:
        return self._state.bank_cap

    @property
    def withdraw_limit(self) -> int:
        return self._state.withdraw_limit

    @property
    def deployer(self) -> str:
        return self._state.deployer

    def deposit(self, account: str, amount: int) -> DepositReceipt:
        """
        Credit `amount` (value already attached to the call) to the caller

        Raises:
            InvalidAmount, ZeroAmount, ExceedsBankCap
        """
        with self._lock:
            try:
                self._check_amount(amount)
                remaining = self._state.bank_cap - self._state.total_deposited
                if amount > remaining:
                    raise ExceedsBankCap(attempted=amount, remaining=remaining)
            except VaultError as e:
                self._log_rejection("deposit", account, e)
                raise

            self._commit(account, balance_delta=amount, deposited=amount, deposits=1)
            balance_after = self._balances[account]

            log_action(self.logger, "info", f"Deposit accepted: {amount}",
                       account=account, action="deposit", resource="vault",
                       extra={"amount": amount, "balance_after": balance_after})
            self._audit(AuditEventType.DEPOSIT, account, {
                "amount": amount, "balance_after": balance_after
            })
            self._publish(VaultEvent.DEPOSIT, account, amount, balance_after)

            return DepositReceipt(account=account, amount=amount, balance_after=balance_after)

    def withdraw(self, account: str, amount: int) -> WithdrawalReceipt:
        """
        Debit `amount` from the caller and pay it out through the executor

        Effects are committed before the executor is called. If the executor
        reports failure (or raises), the effects are reverted and
        TransferFailed is raised.

        Raises:
            InvalidAmount, ZeroAmount, ExceedsWithdrawLimit,
            InsufficientBalance, TransferFailed
        """
        with self._lock:
            try:
                self._check_amount(amount)
                if amount > self._state.withdraw_limit:
                    raise ExceedsWithdrawLimit(attempted=amount, limit=self._state.withdraw_limit)
                balance = self._balances.get(account, 0)
                if amount > balance:
                    raise InsufficientBalance(attempted=amount, balance=balance)
            except VaultError as e:
                self._log_rejection("withdraw", account, e)
                raise

            self._commit(account, balance_delta=-amount, withdrawn=amount, withdrawals=1)

            result = self._execute_transfer(account, amount)
            if not result.success:
                # Compensating write: only this withdrawal's deltas are undone, so
                # re-entrant operations committed during the transfer stay intact
                try:
                    self._commit(account, balance_delta=amount, withdrawn=-amount, withdrawals=-1)
                except Exception as e:
                    # Storage keeps the debit until the next commit for this account
                    # rewrites the state and balance rows from memory
                    self._apply(account, balance_delta=amount, withdrawn=-amount, withdrawals=-1)
                    error = TransferFailed(
                        recipient=account,
                        amount=amount,
                        reason=f"{result.reason}; reversal not persisted: {e}"
                    )
                    log_action(self.logger, "error", f"Withdrawal reversal not persisted: {e}",
                               account=account, action="withdraw", resource="vault",
                               extra=error.to_dict())
                    raise error from e

                error = TransferFailed(recipient=account, amount=amount, reason=result.reason)
                log_action(self.logger, "error", f"Withdrawal rolled back: {result.reason}",
                           account=account, action="withdraw", resource="vault",
                           extra={**error.to_dict(), "latency_ms": result.latency_ms})
                self._audit(AuditEventType.WITHDRAWAL_FAILED, account, {
                    "amount": amount, "reason": result.reason
                })
                raise error

            balance_after = self._balances[account]
            log_action(self.logger, "info", f"Withdrawal paid out: {amount}",
                       account=account, action="withdraw", resource="vault",
                       extra={"amount": amount, "balance_after": balance_after,
                              "transfer_reference": result.reference,
                              "latency_ms": result.latency_ms})
            self._audit(AuditEventType.WITHDRAWAL, account, {
                "amount": amount,
                "balance_after": balance_after,
                "transfer_reference": result.reference
            })
            self._publish(VaultEvent.WITHDRAWAL, account, amount, balance_after)

            return WithdrawalReceipt(
                account=account,
                amount=amount,
                balance_after=balance_after,
                transfer_reference=result.reference
            )

    def receive(self, sender: Optional[str] = None, amount: Any = None) -> None:
        """
        Reject value handed to the vault outside of deposit

        Always raises DirectDepositNotAllowed; nothing is credited.
        """
        with self._lock:
            error = DirectDepositNotAllowed(sender=sender, amount=amount)
            log_action(self.logger, "warning", "Direct transfer rejected",
                       account=sender, action="receive", resource="vault",
                       extra=error.to_dict())
            self._audit(AuditEventType.DIRECT_DEPOSIT_REJECTED, sender or "unknown", {
                "amount": amount if isinstance(amount, int) else repr(amount)
            })
            raise error

    def balance_of(self, account: str) -> int:
        """Balance of an account (0 if it never deposited)"""
        with self._lock:
            return self._balances.get(account, 0)

    def stats(self) -> VaultStats:
        with self._lock:
            state = self._state
            return VaultStats(
                bank_cap=state.bank_cap,
                withdraw_limit=state.withdraw_limit,
                total_deposited=state.total_deposited,
                total_withdrawn=state.total_withdrawn,
                deposit_count=state.deposit_count,
                withdraw_count=state.withdraw_count
            )

    def balances(self) -> Dict[str, int]:
        """Copy of all known account balances"""
        with self._lock:
            return dict(self._balances)

    def check_invariants(self) -> None:
        """
        Recompute the ledger invariants from current state

        Raises:
            InvariantViolation: naming the first invariant that does not hold
        """
        with self._lock:
            state = self._state
            held = sum(self._balances.values())

            if not (_is_positive_int(state.bank_cap) and _is_positive_int(state.withdraw_limit)):
                raise InvariantViolation("positive-limits",
                                         f"bank_cap={state.bank_cap}, withdraw_limit={state.withdraw_limit}")
            if state.total_deposited > state.bank_cap:
                raise InvariantViolation("bank-cap",
                                         f"total_deposited={state.total_deposited} > bank_cap={state.bank_cap}")
            if state.total_deposited - state.total_withdrawn != held:
                raise InvariantViolation(
                    "closed-ledger",
                    f"total_deposited - total_withdrawn = {state.total_deposited - state.total_withdrawn}, "
                    f"sum(balances) = {held}"
                )
            for account, balance in self._balances.items():
                if balance < 0 or balance > state.total_deposited:
                    raise InvariantViolation("account-balance",
                                             f"{account} balance {balance} outside [0, {state.total_deposited}]")

    def _check_amount(self, amount: Any) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise InvalidAmount(amount)
        if amount == 0:
            raise ZeroAmount()

    def _commit(self, account: str, balance_delta: int, deposited: int = 0,
                withdrawn: int = 0, deposits: int = 0, withdrawals: int = 0) -> None:
        """Apply deltas in memory and persist them in one storage transaction"""
        previous_state = self._state
        had_account = account in self._balances
        previous_balance = self._balances.get(account, 0)

        self._apply(account, balance_delta, deposited, withdrawn, deposits, withdrawals)

        try:
            with self.storage.atomic():
                self.storage.save(self.STATE_TABLE, self.STATE_ID, self._state.to_dict())
                self.storage.save(self.BALANCE_TABLE, account,
                                  {"account": account, "balance": self._balances[account]})
        except Exception:
            self._state = previous_state
            if had_account:
                self._balances[account] = previous_balance
            else:
                del self._balances[account]
            raise

    def _apply(self, account: str, balance_delta: int, deposited: int = 0,
               withdrawn: int = 0, deposits: int = 0, withdrawals: int = 0) -> None:
        """Apply deltas to the in-memory state only"""
        state = self._state
        self._state = replace(
            state,
            total_deposited=state.total_deposited + deposited,
            total_withdrawn=state.total_withdrawn + withdrawn,
            deposit_count=state.deposit_count + deposits,
            withdraw_count=state.withdraw_count + withdrawals,
            updated_at=datetime.now(timezone.utc)
        )
        self._balances[account] = self._balances.get(account, 0) + balance_delta

    def _execute_transfer(self, account: str, amount: int) -> TransferResult:
        try:
            result = self.transfer_executor.transfer(account, amount)
        except Exception as e:
            self.logger.error(f"Transfer executor raised for {account}: {e}")
            return TransferResult.failed(f"{type(e).__name__}: {e}")
        if not isinstance(result, TransferResult):
            return TransferResult.failed(f"unexpected executor result {result!r}")
        return result

    def _log_rejection(self, action: str, account: str, error: VaultError) -> None:
        log_action(self.logger, "warning", f"{action.capitalize()} rejected: {error.message}",
                   account=account, action=action, resource="vault", extra=error.to_dict())

    def _audit(self, event_type: AuditEventType, account: str, metadata: Dict[str, Any]) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(event_type, account, metadata)

    def _publish(self, event_type: VaultEvent, account: str, amount: int, balance_after: int) -> None:
        self.event_dispatcher.publish(EventPayload(
            event_type=event_type,
            account=account,
            amount=amount,
            balance_after=balance_after
        ))

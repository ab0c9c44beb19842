"""
Transfer Executor Module

Collaborators that move value out of the vault to a recipient. The ledger
calls an executor after its own effects are committed and treats every
non-success outcome the same way, whatever the cause. Executors never
retry; a retry policy belongs to the payout service behind them.
"""

import httpx
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger("value_vault.transfer")


@dataclass
class TransferResult:
    """Outcome reported by a transfer executor"""
    success: bool
    reference: Optional[str] = None  # payout id assigned by the executor
    reason: Optional[str] = None     # failure explanation
    latency_ms: float = 0.0

    @classmethod
    def ok(cls, reference: Optional[str] = None, latency_ms: float = 0.0) -> 'TransferResult':
        return cls(success=True, reference=reference, latency_ms=latency_ms)

    @classmethod
    def failed(cls, reason: str, latency_ms: float = 0.0) -> 'TransferResult':
        return cls(success=False, reason=reason, latency_ms=latency_ms)


class TransferExecutor(ABC):
    """Moves value to a recipient and reports the outcome synchronously"""

    @abstractmethod
    def transfer(self, recipient: str, amount: int) -> TransferResult:
        """Attempt to move `amount` base units to `recipient`"""
        pass

    def close(self) -> None:
        pass


class HttpTransferExecutor(TransferExecutor):
    """REST client for an external payout service"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def transfer(self, recipient: str, amount: int) -> TransferResult:
        """POST the payout and map the response to a TransferResult

        Any transport error, timeout, non-2xx response or a payload whose
        status is not "completed" is a failed transfer.
        """
        headers = {"Idempotency-Key": str(uuid.uuid4())}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        start = time.time()
        try:
            response = self._client.post(
                f"{self.base_url}/payouts",
                json={"recipient": recipient, "amount": amount},
                headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"Payout service unreachable: {e}")
            return TransferResult.failed(f"transport error: {e}", (time.time() - start) * 1000)

        latency_ms = (time.time() - start) * 1000

        if response.status_code not in (200, 201):
            logger.warning(f"Payout service returned {response.status_code}: {response.text}")
            return TransferResult.failed(f"payout service returned {response.status_code}", latency_ms)

        try:
            data = response.json()
        except ValueError:
            return TransferResult.failed("payout service returned invalid JSON", latency_ms)

        status = str(data.get("status", "")).lower()
        if status != "completed":
            return TransferResult.failed(f"payout status {status or 'missing'}", latency_ms)

        return TransferResult.ok(reference=data.get("payout_id"), latency_ms=latency_ms)

    def health_check(self) -> bool:
        """Check if the payout service is healthy"""
        try:
            r = self._client.get(f"{self.base_url}/health")
            return r.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self) -> None:
        self._client.close()


@dataclass
class Payout:
    """A transfer accepted by the recording executor"""
    recipient: str
    amount: int
    reference: str


class RecordingTransferExecutor(TransferExecutor):
    """In-process executor for tests and local runs.

    Records every accepted payout. `fail_next`/`fail_all` make it report
    failures, and `on_transfer` runs arbitrary code during the transfer
    (e.g. a call back into the ledger).
    """

    def __init__(self, on_transfer: Optional[Callable[[str, int], None]] = None):
        self.payouts: List[Payout] = []
        self.attempts = 0
        self.fail_all = False
        self._fail_next = 0
        self.on_transfer = on_transfer
        self._lock = threading.Lock()

    def fail_next(self, count: int = 1) -> None:
        self._fail_next += count

    def transfer(self, recipient: str, amount: int) -> TransferResult:
        with self._lock:
            self.attempts += 1
            if self.fail_all or self._fail_next > 0:
                if self._fail_next > 0:
                    self._fail_next -= 1
                return TransferResult.failed("executor configured to fail")

        if self.on_transfer:
            self.on_transfer(recipient, amount)

        payout = Payout(recipient=recipient, amount=amount, reference=str(uuid.uuid4()))
        with self._lock:
            self.payouts.append(payout)
        return TransferResult.ok(reference=payout.reference)

    @property
    def total_paid(self) -> int:
        return sum(p.amount for p in self.payouts)


def create_transfer_executor(url: str = "", timeout: float = 5.0,
                             api_key: str = "") -> TransferExecutor:
    """Create the executor from configuration (empty url = recording executor)"""
    if not url:
        return RecordingTransferExecutor()
    return HttpTransferExecutor(base_url=url, timeout=timeout, api_key=api_key or None)

"""
Tests for transfer executors
"""

import json
import pytest
import httpx

from value_vault.transfer import (
    TransferResult, HttpTransferExecutor, RecordingTransferExecutor,
    create_transfer_executor
)


def make_executor(handler, api_key=None) -> HttpTransferExecutor:
    """HTTP executor backed by an in-process mock transport"""
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpTransferExecutor(base_url="http://payouts.test/", api_key=api_key, client=client)


class TestTransferResult:

    def test_ok(self):
        result = TransferResult.ok(reference="PAY-1")
        assert result.success
        assert result.reference == "PAY-1"
        assert result.reason is None

    def test_failed(self):
        result = TransferResult.failed("declined")
        assert not result.success
        assert result.reason == "declined"


class TestHttpTransferExecutor:
    """Test mapping of payout service responses to transfer results"""

    def test_completed_payout(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            seen["idempotency"] = request.headers.get("Idempotency-Key")
            return httpx.Response(201, json={"status": "completed", "payout_id": "PAY-42"})

        executor = make_executor(handler, api_key="secret")
        result = executor.transfer("ALICE", 10**18)

        assert result.success
        assert result.reference == "PAY-42"
        assert seen["url"] == "http://payouts.test/payouts"
        assert seen["body"] == {"recipient": "ALICE", "amount": 10**18}
        assert seen["auth"] == "Bearer secret"
        assert seen["idempotency"]

    def test_no_auth_header_without_api_key(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"status": "completed"})

        assert make_executor(handler).transfer("ALICE", 1).success
        assert seen["auth"] is None

    @pytest.mark.parametrize("response", [
        httpx.Response(500, text="internal error"),
        httpx.Response(402, json={"status": "completed"}),
        httpx.Response(200, json={"status": "pending"}),
        httpx.Response(200, json={}),
        httpx.Response(200, text="not json"),
    ])
    def test_non_success_responses_fail(self, response):
        executor = make_executor(lambda request: response)

        result = executor.transfer("ALICE", 5)

        assert not result.success
        assert result.reason

    def test_transport_error_fails(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = make_executor(handler).transfer("ALICE", 5)

        assert not result.success
        assert "connection refused" in result.reason

    def test_timeout_fails(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = make_executor(handler).transfer("ALICE", 5)

        assert not result.success

    def test_single_attempt_per_transfer(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        make_executor(handler).transfer("ALICE", 5)

        assert len(calls) == 1

    def test_health_check(self):
        healthy = make_executor(lambda request: httpx.Response(200))
        assert healthy.health_check()

        def down(request):
            raise httpx.ConnectError("down", request=request)

        assert not make_executor(down).health_check()


class TestRecordingTransferExecutor:

    def test_records_payouts(self):
        executor = RecordingTransferExecutor()

        executor.transfer("ALICE", 3)
        executor.transfer("BOB", 4)

        assert [(p.recipient, p.amount) for p in executor.payouts] == [("ALICE", 3), ("BOB", 4)]
        assert executor.total_paid == 7
        assert executor.attempts == 2

    def test_fail_next(self):
        executor = RecordingTransferExecutor()
        executor.fail_next(2)

        assert not executor.transfer("ALICE", 1).success
        assert not executor.transfer("ALICE", 1).success
        assert executor.transfer("ALICE", 1).success
        assert executor.total_paid == 1

    def test_fail_all(self):
        executor = RecordingTransferExecutor()
        executor.fail_all = True

        assert not executor.transfer("ALICE", 1).success
        assert executor.payouts == []


class TestCreateTransferExecutor:

    def test_empty_url_gives_recording_executor(self):
        assert isinstance(create_transfer_executor(""), RecordingTransferExecutor)

    def test_url_gives_http_executor(self):
        executor = create_transfer_executor("http://payouts.test", timeout=1.5, api_key="k")
        assert isinstance(executor, HttpTransferExecutor)
        assert executor.timeout == 1.5
        assert executor.api_key == "k"
        executor.close()

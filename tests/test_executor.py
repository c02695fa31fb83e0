"""
Transfer executor tests
"""

import asyncio

from solders.hash import Hash
from solders.keypair import Keypair

from fund_transfer.errors import (
    InsufficientFunds,
    InvalidKeyError,
    TransientLedgerError,
    Unreachable,
)
from fund_transfer.executor import TransferExecutor
from fund_transfer.models import OutcomeStatus, Stage, TransferRequest
from fund_transfer.retry import RetryPolicy
from fund_transfer.units import sol_to_lamports

from fakes import FakeClock, ScriptedRpcClient, StubLedger, ok


def make_executor(ledger, clock=None, **kwargs):
    kwargs.setdefault('retry_policy', RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=8.0))
    kwargs.setdefault('confirm_timeout', 60.0)
    kwargs.setdefault('confirm_poll_interval', 2.0)
    return TransferExecutor(ledger, clock=clock or FakeClock(), **kwargs)


def request(amount=sol_to_lamports(3.0)):
    return TransferRequest(sender="sender-keypair", receiver="receiver-pubkey", amount=amount)


class TestSubmission:

    def test_confirmed_after_two_polls(self):
        ledger = StubLedger(finalize_after=2)
        outcome = asyncio.run(make_executor(ledger).execute(request()))

        assert outcome.status is OutcomeStatus.CONFIRMED
        assert outcome.signature == "sig1"
        assert outcome.amount == 3_000_000_000
        assert ledger.built == [("sender-keypair", "receiver-pubkey", 3_000_000_000)]
        assert len(ledger.submitted) == 1
        assert ledger.polls == 2

    def test_transient_failures_are_retried_with_same_transaction(self):
        ledger = StubLedger(submit_errors=[Unreachable("timeout")] * 3)
        clock = FakeClock()
        outcome = asyncio.run(make_executor(ledger, clock).execute(request()))

        assert outcome.status is OutcomeStatus.CONFIRMED
        assert len(ledger.submitted) == 4
        assert len(ledger.built) == 1
        assert len({tx.signature for tx in ledger.submitted}) == 1
        assert clock.sleeps[:3] == [1.0, 2.0, 4.0]

    def test_permanent_failure_aborts_without_retry(self):
        ledger = StubLedger(submit_errors=[InsufficientFunds("insufficient lamports")])
        clock = FakeClock()
        outcome = asyncio.run(make_executor(ledger, clock).execute(request()))

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.stage is Stage.SUBMIT
        assert "insufficient" in outcome.cause
        assert outcome.signature == "sig1"
        assert len(ledger.submitted) == 1
        assert clock.sleeps == []
        assert ledger.polls == 0

    def test_retries_stop_at_cap(self):
        ledger = StubLedger(submit_errors=[TransientLedgerError("node unavailable")] * 10)
        outcome = asyncio.run(make_executor(ledger).execute(request()))

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.stage is Stage.SUBMIT
        assert "retries exhausted" in outcome.cause
        assert outcome.signature == "sig1"
        assert len(ledger.submitted) == 5
        assert ledger.polls == 0

    def test_shutdown_during_backoff(self):
        ledger = StubLedger(submit_errors=[Unreachable("timeout")] * 3)
        clock = FakeClock()
        clock.on_sleep = lambda c, event: event.set()

        async def scenario():
            return await make_executor(ledger, clock).execute(request(), asyncio.Event())

        outcome = asyncio.run(scenario())
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.stage is Stage.SUBMIT
        assert outcome.cause == "cancelled"
        assert outcome.signature == "sig1"
        assert len(ledger.submitted) == 1


class TestSigning:

    def test_signing_failure_is_not_retried(self):
        ledger = StubLedger(sign_error=InvalidKeyError("bad key material"))
        outcome = asyncio.run(make_executor(ledger).execute(request()))

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.stage is Stage.SIGNING
        assert outcome.cause == "bad key material"
        assert ledger.submitted == []

    def test_dry_run_signs_but_does_not_submit(self):
        ledger = StubLedger()
        outcome = asyncio.run(make_executor(ledger, dry_run=True).execute(request()))

        assert outcome.status is OutcomeStatus.SKIPPED
        assert "dry run" in outcome.reason
        assert len(ledger.built) == 1
        assert ledger.submitted == []


class TestConfirmation:

    def test_timeout_without_finality(self):
        ledger = StubLedger(finalize_after=None)
        clock = FakeClock()
        executor = make_executor(ledger, clock, confirm_timeout=10.0, confirm_poll_interval=2.0)
        outcome = asyncio.run(executor.execute(request()))

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.stage is Stage.CONFIRM
        assert outcome.cause == "timeout"
        assert outcome.signature == "sig1"
        assert clock.time <= 10.0
        # never resubmitted
        assert len(ledger.submitted) == 1

    def test_dropped_transaction(self):
        ledger = StubLedger(dropped=True)
        outcome = asyncio.run(make_executor(ledger).execute(request()))

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.stage is Stage.CONFIRM
        assert outcome.cause == "dropped"

    def test_poll_errors_count_as_pending(self):
        ledger = StubLedger(finalize_after=3, poll_errors=[Unreachable("timeout")])
        outcome = asyncio.run(make_executor(ledger).execute(request()))

        assert outcome.status is OutcomeStatus.CONFIRMED
        assert ledger.polls == 3

    def test_cancel_during_polling(self):
        ledger = StubLedger(finalize_after=None)
        clock = FakeClock()
        clock.on_sleep = lambda c, event: event.set()

        async def scenario():
            return await make_executor(ledger, clock).execute(request(), asyncio.Event())

        outcome = asyncio.run(scenario())
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.stage is Stage.CONFIRM
        assert outcome.cause == "cancelled"
        assert ledger.polls == 1
        assert clock.sleeps == [2.0]

    def test_stop_already_set_skips_polling(self):
        ledger = StubLedger()

        async def scenario():
            event = asyncio.Event()
            event.set()
            return await make_executor(ledger).execute(request(), event)

        outcome = asyncio.run(scenario())
        # submission is allowed to finish, confirmation is abandoned
        assert len(ledger.submitted) == 1
        assert outcome.cause == "cancelled"
        assert ledger.polls == 0


class TestResubmission:

    def test_resend_after_lost_response_confirms(self):
        # First send reaches the node but the response is lost; the resend is a duplicate
        client = ScriptedRpcClient({
            "getLatestBlockhash": ok({
                "context": {"slot": 1},
                "value": {"blockhash": str(Hash.default()), "lastValidBlockHeight": 150},
            }),
            "sendTransaction": [
                Unreachable("sendTransaction: TimeoutError"),
                {"error": {
                    "code": -32002,
                    "message": "Transaction simulation failed: This transaction has already been processed",
                    "data": {"err": "AlreadyProcessed", "logs": []},
                }},
            ],
            "getSignatureStatuses": ok({
                "context": {"slot": 2},
                "value": [{"slot": 2, "err": None, "confirmationStatus": "finalized"}],
            }),
        })
        transfer = TransferRequest(sender=Keypair(), receiver=Keypair().pubkey(), amount=3_000_000_000)

        outcome = asyncio.run(make_executor(client).execute(transfer))

        assert outcome.status is OutcomeStatus.CONFIRMED
        sends = [params for method, params in client.calls if method == "sendTransaction"]
        assert len(sends) == 2
        assert sends[0][0] == sends[1][0]
        status_query = next(params for method, params in client.calls if method == "getSignatureStatuses")
        assert outcome.signature == status_query[0][0]

    def test_unexpected_submit_error_keeps_signature(self):
        ledger = StubLedger(submit_errors=[RuntimeError("boom")])
        outcome = asyncio.run(make_executor(ledger).execute(request()))

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.stage is Stage.SUBMIT
        assert "unexpected error" in outcome.cause
        assert outcome.signature == "sig1"

"""
Transfer Executor

Runs one transfer attempt through:
1. Building / signing
2. Submission (bounded retry on transient failures)
3. Confirmation polling (bounded by timeout, abandoned on shutdown)

The transaction is signed once. Retries resend the same signed bytes, which the
ledger deduplicates by signature, so a retried submission cannot move funds twice.
After a confirmation timeout nothing is resubmitted.
"""

import asyncio
from typing import Optional

from loguru import logger

from .clock import Clock
from .errors import CancelledByShutdown, LedgerError, PermanentLedgerError, TransientLedgerError
from .ledger import LedgerClient
from .models import PollStatus, SignedTransaction, Stage, TransferOutcome, TransferRequest
from .retry import RetryPolicy, run_with_retry
from .units import lamports_to_sol


class TransferExecutor:
    """
    Build -> sign -> submit -> confirm for a single transfer request

    Returns a TransferOutcome in every case; errors never escape execute().
    """

    # Confirmation settings
    CONFIRM_TIMEOUT_SECONDS = 120.0
    CONFIRM_POLL_INTERVAL_SECONDS = 2.0

    def __init__(
        self,
        ledger: LedgerClient,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None,
        confirm_timeout: float = CONFIRM_TIMEOUT_SECONDS,
        confirm_poll_interval: float = CONFIRM_POLL_INTERVAL_SECONDS,
        dry_run: bool = False
    ):
        """
        Initialize executor

        Args:
            ledger: Ledger client
            retry_policy: Backoff for transient submission failures
            clock: Clock for backoff and polling sleeps
            confirm_timeout: Maximum time to wait for finality (seconds)
            confirm_poll_interval: Time between status polls (seconds)
            dry_run: Build and sign but never submit
        """
        self.ledger = ledger
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock or Clock()
        self.confirm_timeout = confirm_timeout
        self.confirm_poll_interval = confirm_poll_interval
        self.dry_run = dry_run

    async def execute(
        self,
        request: TransferRequest,
        stop_event: Optional[asyncio.Event] = None
    ) -> TransferOutcome:
        """
        Execute a transfer request

        Args:
            request: Transfer request
            stop_event: Shutdown signal, checked at every suspension point

        Returns:
            TransferOutcome (confirmed, skipped for dry run, or failed)
        """
        amount = request.amount
        logger.info(f"Starting transfer: {request.request_id}")
        logger.info(f"  To: {request.receiver}")
        logger.info(f"  Amount: {amount} lamports ({lamports_to_sol(amount)} SOL)")

        # Building / signing
        try:
            tx = await self.ledger.build_and_sign(request.sender, request.receiver, amount)
        except LedgerError as e:
            logger.error(f"✗ Building/signing failed: {e}")
            return TransferOutcome.failed(Stage.SIGNING, str(e), amount=amount)
        except Exception as e:
            logger.exception(f"✗ Unexpected error while building/signing: {e}")
            return TransferOutcome.failed(Stage.SIGNING, f"unexpected error: {e!r}", amount=amount)

        logger.info(f"✓ Transaction signed: {tx.signature}")

        if self.dry_run:
            logger.info("⚡ Dry run: not submitting transaction")
            return TransferOutcome.skipped(
                f"dry run, would transfer {amount} lamports ({tx.signature})",
                amount=amount
            )

        # Submission
        # Failures carry the signature: an earlier send of the same bytes may still land.
        try:
            signature = await self._submit(tx, stop_event)
        except CancelledByShutdown as e:
            logger.warning(f"Submission abandoned: {e}")
            return TransferOutcome.failed(Stage.SUBMIT, "cancelled", tx.signature, amount)
        except PermanentLedgerError as e:
            logger.error(f"✗ Submission rejected: {e}")
            return TransferOutcome.failed(Stage.SUBMIT, str(e), tx.signature, amount)
        except TransientLedgerError as e:
            return TransferOutcome.failed(
                Stage.SUBMIT,
                f"retries exhausted: {e}",
                tx.signature,
                amount
            )
        except Exception as e:
            logger.exception(f"✗ Unexpected error during submission: {e}")
            return TransferOutcome.failed(
                Stage.SUBMIT,
                f"unexpected error: {e!r}",
                tx.signature,
                amount
            )

        logger.info(f"✓ Transaction submitted: {signature}")

        # Confirmation
        return await self._confirm(signature, amount, stop_event)

    async def _submit(self, tx: SignedTransaction, stop_event: Optional[asyncio.Event]) -> str:
        return await run_with_retry(
            lambda: self.ledger.submit(tx),
            self.retry_policy,
            self.clock,
            stop_event=stop_event,
            description=f"submission of {tx.signature}"
        )

    async def _confirm(
        self,
        signature: str,
        amount: int,
        stop_event: Optional[asyncio.Event]
    ) -> TransferOutcome:
        """
        Poll for finality until timeout or shutdown

        Errors while polling count as "still pending".
        """
        start = self.clock.now()
        polls = 0
        logger.info(f"Waiting for finality (max {self.confirm_timeout:.0f}s)...")

        while True:
            if stop_event is not None and stop_event.is_set():
                logger.warning(f"⚠ Confirmation polling cancelled for {signature}")
                return TransferOutcome.failed(Stage.CONFIRM, "cancelled", signature, amount)

            polls += 1
            try:
                status = await self.ledger.poll_status(signature)
            except LedgerError as e:
                logger.debug(f"Error polling status of {signature}: {e}")
                status = PollStatus.PENDING
            except Exception as e:
                logger.warning(f"Unexpected error polling status of {signature}: {e!r}")
                status = PollStatus.PENDING

            if status is PollStatus.FINALIZED:
                logger.info(f"✅ Transfer confirmed: {signature} after {polls} polls")
                return TransferOutcome.confirmed(signature, amount)

            if status is PollStatus.DROPPED:
                logger.error(f"✗ Transaction dropped: {signature}")
                return TransferOutcome.failed(Stage.CONFIRM, "dropped", signature, amount)

            remaining = self.confirm_timeout - (self.clock.now() - start)
            if remaining <= 0:
                logger.warning(f"⚠ Confirmation timeout for {signature} (may still land)")
                return TransferOutcome.failed(Stage.CONFIRM, "timeout", signature, amount)

            if await self.clock.sleep(min(self.confirm_poll_interval, remaining), stop_event):
                logger.warning(f"⚠ Confirmation polling cancelled for {signature}")
                return TransferOutcome.failed(Stage.CONFIRM, "cancelled", signature, amount)

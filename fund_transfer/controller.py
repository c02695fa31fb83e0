"""
Cycle Controller

observe -> decide -> (act) -> notify -> sleep, repeated until stop() is called.
One cycle runs to completion before the next starts, so at most one transfer
is ever in flight.
"""

from typing import Optional

from loguru import logger

from .clock import Clock
from .errors import LedgerError
from .executor import TransferExecutor
from .ledger import LedgerClient
from .models import CycleState, Stage, TransferOutcome, TransferRequest
from .notifier import Notifier
from .policy import decide
from .units import lamports_to_sol


class CycleController:
    """Drives the repeating balance check / transfer schedule"""

    def __init__(
        self,
        ledger: LedgerClient,
        executor: TransferExecutor,
        notifier: Notifier,
        sender,
        sender_pubkey,
        receiver,
        threshold: int,
        interval_seconds: float,
        state: Optional[CycleState] = None,
        clock: Optional[Clock] = None
    ):
        """
        Args:
            ledger: Ledger client
            executor: Transfer executor
            notifier: Operator notifier
            sender: Sender keypair reference
            sender_pubkey: Sender public key (balance is read for this account)
            receiver: Receiver public key
            threshold: Balance to keep on the sender (lamports)
            interval_seconds: Time between cycles
            state: Shared cycle state (created if omitted)
            clock: Clock for the inter-cycle sleep
        """
        self.ledger = ledger
        self.executor = executor
        self.notifier = notifier
        self.sender = sender
        self.sender_pubkey = sender_pubkey
        self.receiver = receiver
        self.threshold = threshold
        self.state = state or CycleState(interval_seconds=interval_seconds)
        self.clock = clock or Clock()

    def stop(self):
        """Request shutdown; observed at the next suspension point"""
        if not self.state.stop_event.is_set():
            logger.info("Shutdown requested")
        self.state.stop_event.set()

    async def run_cycle(self) -> TransferOutcome:
        """
        Run one cycle and notify its outcome exactly once

        Returns:
            The cycle outcome
        """
        try:
            outcome = await self._observe_and_act()
        except Exception as e:
            # The executor converts its own errors, so anything left came from observing
            logger.exception(f"Unexpected error during cycle: {e}")
            outcome = TransferOutcome.failed(Stage.OBSERVE, f"unexpected error: {e!r}")

        self.state.last_outcome = outcome
        self.state.cycles_completed += 1
        logger.info(f"Cycle {self.state.cycles_completed} outcome: {outcome}")

        await self.notifier.notify(outcome)
        return outcome

    async def _observe_and_act(self) -> TransferOutcome:
        try:
            balance = await self.ledger.get_balance(self.sender_pubkey)
            min_reserve = await self.ledger.get_minimum_reserve()
        except LedgerError as e:
            logger.warning(f"Failed to get balance; will retry next cycle: {e}")
            return TransferOutcome.failed(Stage.OBSERVE, str(e))

        self.state.last_balance = balance
        logger.info(f"Balance check: lamports = {balance}, sol = {lamports_to_sol(balance)}")

        action = decide(balance, self.threshold, min_reserve)
        if not action.is_transfer:
            return TransferOutcome.skipped("below threshold")

        logger.info(
            f"Excess detected; preparing transfer: excess_lamports = {action.amount}, "
            f"excess_sol = {lamports_to_sol(action.amount)}"
        )
        request = TransferRequest(sender=self.sender, receiver=self.receiver, amount=action.amount)
        return await self.executor.execute(request, self.state.stop_event)

    async def run_forever(self):
        """Run cycles until stop() is called"""
        logger.info(
            f"Starting cycle loop: threshold_sol = {lamports_to_sol(self.threshold)}, "
            f"poll_interval_s = {self.state.interval_seconds}"
        )

        while not self.state.stop_requested:
            try:
                await self.run_cycle()
            except Exception as e:
                # Keep future cycles available
                logger.exception(f"Unexpected error during cycle: {e}")

            if await self.clock.sleep(self.state.interval_seconds, self.state.stop_event):
                break

        logger.info(f"✓ Cycle loop stopped after {self.state.cycles_completed} cycles")

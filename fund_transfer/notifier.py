"""
Operator notifications

Delivery is best-effort: notify() never raises, failures are logged here and
stop at this boundary.
"""

from typing import Optional

import aiohttp
from loguru import logger

from .models import OutcomeStatus, TransferOutcome
from .units import lamports_to_sol


def format_outcome_message(outcome: TransferOutcome, sender=None, receiver=None) -> str:
    """
    Human-readable text for a cycle outcome

    Args:
        outcome: Cycle outcome
        sender: Sender public key (optional, for context)
        receiver: Receiver public key (optional, for context)
    """
    if outcome.status is OutcomeStatus.CONFIRMED:
        return (
            f"Transferred {outcome.amount} Lamports from {sender} to {receiver}. "
            f"Signature: {outcome.signature}"
        )

    if outcome.status is OutcomeStatus.SUBMITTED:
        return f"Transfer submitted from {sender} to {receiver}. Signature: {outcome.signature}"

    if outcome.status is OutcomeStatus.SKIPPED:
        return f"No transfer from {sender}: {outcome.reason}"

    text = f"Transfer from {sender} failed at {outcome.stage.value}: {outcome.cause}"
    if outcome.amount:
        text += f" (amount {lamports_to_sol(outcome.amount)} SOL)"
    if outcome.signature:
        text += f". Signature: {outcome.signature} (may still land, check before retrying manually)"
    return text


class Notifier:
    """Base notifier"""

    def __init__(self, sender=None, receiver=None):
        self.sender = sender
        self.receiver = receiver

    async def notify(self, outcome: TransferOutcome) -> None:
        try:
            await self._deliver(format_outcome_message(outcome, self.sender, self.receiver))
        except Exception as e:
            logger.warning(f"Notification failed: {e}")

    async def _deliver(self, text: str) -> None:
        raise NotImplementedError

    async def close(self):
        pass


class LogNotifier(Notifier):
    """Writes notifications to the log when no operator channel is configured"""

    async def _deliver(self, text: str) -> None:
        logger.info(f"Notification: {text}")


class SlackNotifier(Notifier):
    """Slack incoming webhook notifier"""

    def __init__(self, webhook_url: str, sender=None, receiver=None, timeout: float = 10.0):
        super().__init__(sender, receiver)
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _deliver(self, text: str) -> None:
        await self._ensure_session()
        async with self._session.post(self.webhook_url, json={"text": text}) as response:
            if 200 <= response.status < 300:
                logger.info("✓ Slack notification sent")
            else:
                logger.warning(f"✗ Slack webhook returned status {response.status}")

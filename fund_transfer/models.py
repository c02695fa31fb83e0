"""
Data model for the excess funds transfer cycle

TransferRequest is built fresh each cycle, TransferOutcome is what gets
reported to the notifier. Neither is persisted.
"""

import asyncio
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Stage(str, Enum):
    """Cycle stage at which a failure happened"""
    OBSERVE = "observe"
    SIGNING = "signing"
    SUBMIT = "submit"
    CONFIRM = "confirm"


class OutcomeStatus(str, Enum):
    SKIPPED = "skipped"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PollStatus(str, Enum):
    """Ledger view of a submitted transaction"""
    PENDING = "pending"
    FINALIZED = "finalized"
    DROPPED = "dropped"


@dataclass
class TransferRequest:
    """Transfer request"""
    sender: Any  # keypair reference, only the ledger client looks inside
    receiver: Any  # public key
    amount: int  # lamports
    request_id: str = ""
    requested_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {self.amount}")
        if not self.request_id:
            self.request_id = f"XFER_{uuid.uuid4().hex[:8]}"
        if self.requested_at is None:
            self.requested_at = datetime.now(timezone.utc)


@dataclass
class SignedTransaction:
    """Signed transfer ready for submission"""
    signature: str
    payload: bytes
    last_valid_block_height: Optional[int] = None


@dataclass
class TransferOutcome:
    """
    Tagged result of one cycle

    skipped   -> reason
    submitted -> signature
    confirmed -> signature
    failed    -> stage, cause (signature set when the transaction was sent)
    """
    status: OutcomeStatus
    reason: Optional[str] = None
    signature: Optional[str] = None
    stage: Optional[Stage] = None
    cause: Optional[str] = None
    amount: Optional[int] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.completed_at is None:
            self.completed_at = datetime.now(timezone.utc)

    @classmethod
    def skipped(cls, reason: str, amount: Optional[int] = None) -> 'TransferOutcome':
        return cls(status=OutcomeStatus.SKIPPED, reason=reason, amount=amount)

    @classmethod
    def submitted(cls, signature: str, amount: Optional[int] = None) -> 'TransferOutcome':
        return cls(status=OutcomeStatus.SUBMITTED, signature=signature, amount=amount)

    @classmethod
    def confirmed(cls, signature: str, amount: Optional[int] = None) -> 'TransferOutcome':
        return cls(status=OutcomeStatus.CONFIRMED, signature=signature, amount=amount)

    @classmethod
    def failed(
        cls,
        stage: Stage,
        cause: str,
        signature: Optional[str] = None,
        amount: Optional[int] = None
    ) -> 'TransferOutcome':
        return cls(
            status=OutcomeStatus.FAILED,
            stage=stage,
            cause=cause,
            signature=signature,
            amount=amount
        )

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.CONFIRMED

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['status'] = self.status.value
        if self.stage:
            data['stage'] = self.stage.value
        if self.completed_at:
            data['completed_at'] = self.completed_at.isoformat()
        return data

    def __str__(self):
        if self.status is OutcomeStatus.SKIPPED:
            return f"Skipped({self.reason})"
        if self.status is OutcomeStatus.FAILED:
            return f"Failed({self.stage.value}: {self.cause})"
        return f"{self.status.value.capitalize()}({self.signature})"


@dataclass
class CycleState:
    """
    Process-wide state held by the cycle controller

    Nothing here survives a restart. last_outcome is for logging only.
    """
    interval_seconds: float
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    last_outcome: Optional[TransferOutcome] = None
    last_balance: Optional[int] = None  # advisory, never used to authorize a transfer
    cycles_completed: int = 0

    @property
    def stop_requested(self) -> bool:
        return self.stop_event.is_set()

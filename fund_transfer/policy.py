"""
Transfer Policy

Decides whether a balance observation calls for a transfer and how much to move.
The threshold is a floor: only the excess above it is moved, and never so much
that the sender drops below the ledger's reserve.
"""

from dataclasses import dataclass

NOOP = "noop"
TRANSFER = "transfer"


@dataclass(frozen=True)
class Action:
    """Policy decision"""
    kind: str
    amount: int = 0

    @classmethod
    def noop(cls) -> 'Action':
        return cls(kind=NOOP)

    @classmethod
    def transfer(cls, amount: int) -> 'Action':
        return cls(kind=TRANSFER, amount=amount)

    @property
    def is_transfer(self) -> bool:
        return self.kind == TRANSFER


def decide(balance: int, threshold: int, min_reserve: int) -> Action:
    """
    Decide what to do with the current balance

    Args:
        balance: Observed balance (lamports)
        threshold: Balance to keep on the sender (lamports)
        min_reserve: Balance the ledger requires the account to retain (lamports)

    Returns:
        Action.noop() or Action.transfer(amount) with 0 < amount <= balance - min_reserve
    """
    if balance <= threshold:
        return Action.noop()

    amount = max(0, min(balance - threshold, balance - min_reserve))
    if amount == 0:
        return Action.noop()

    return Action.transfer(amount)

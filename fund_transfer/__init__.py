"""
Automated Fund Transfer

Daemon that keeps a configured balance on a sender keypair and transfers the
excess SOL to a receiver, waiting for finality and notifying an operator channel.

Components:
- policy: decides whether to transfer and how much
- executor: build -> sign -> submit -> confirm with bounded retry
- controller: the repeating observe/decide/act/notify/sleep cycle
- ledger: Solana JSON-RPC client
- notifier: Slack webhook / log notifications
- config: YAML configuration
"""

from .controller import CycleController
from .executor import TransferExecutor
from .ledger import LedgerClient, SolanaRpcClient, load_keypair, parse_pubkey
from .models import (
    CycleState,
    OutcomeStatus,
    PollStatus,
    SignedTransaction,
    Stage,
    TransferOutcome,
    TransferRequest,
)
from .notifier import LogNotifier, Notifier, SlackNotifier
from .policy import Action, decide
from .retry import RetryPolicy, run_with_retry

__all__ = [
    'CycleController',
    'TransferExecutor',
    'LedgerClient',
    'SolanaRpcClient',
    'load_keypair',
    'parse_pubkey',
    'CycleState',
    'OutcomeStatus',
    'PollStatus',
    'SignedTransaction',
    'Stage',
    'TransferOutcome',
    'TransferRequest',
    'LogNotifier',
    'Notifier',
    'SlackNotifier',
    'Action',
    'decide',
    'RetryPolicy',
    'run_with_retry',
]

__version__ = '0.1.0'

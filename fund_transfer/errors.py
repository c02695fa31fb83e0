"""
Error taxonomy for the fund transfer daemon

Fatal at startup:
- ConfigError, KeypairError

Per cycle (converted into a TransferOutcome, never fatal to the process):
- TransientLedgerError: retryable (network, timeout, node unavailable)
- PermanentLedgerError: retrying changes nothing (invalid account, insufficient funds)
"""


class FundTransferError(Exception):
    """Base class for all fund transfer errors"""


class ConfigError(FundTransferError):
    """Configuration file missing, unreadable or invalid"""


class KeypairError(FundTransferError):
    """Signing key material unreadable or invalid"""


class LedgerError(FundTransferError):
    """Base class for ledger client failures"""


class TransientLedgerError(LedgerError):
    """Retryable ledger failure"""


class PermanentLedgerError(LedgerError):
    """Non-retryable ledger failure"""


class Unreachable(TransientLedgerError):
    """RPC endpoint could not be reached or timed out"""


class InvalidAccount(PermanentLedgerError):
    """Account identifier rejected by the ledger"""


class InsufficientFunds(PermanentLedgerError):
    """Sender cannot cover the transfer amount plus fees"""


class InvalidKeyError(PermanentLedgerError):
    """Transaction could not be signed with the sender key"""


class CancelledByShutdown(FundTransferError):
    """Shutdown was requested while waiting at a suspension point"""


class AlreadyProcessed(PermanentLedgerError):
    """The node has already seen this exact signed transaction"""

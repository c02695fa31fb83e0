"""
Ledger Client

LedgerClient is the capability the transfer core consumes. SolanaRpcClient
implements it with JSON-RPC over aiohttp and signs transfers locally with solders.

Error classification:
- connection errors, timeouts, HTTP 429/5xx, node unhealthy -> TransientLedgerError
- everything else the node rejects -> PermanentLedgerError
"""

import asyncio
import base64
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from .errors import (
    AlreadyProcessed,
    InsufficientFunds,
    InvalidAccount,
    InvalidKeyError,
    KeypairError,
    PermanentLedgerError,
    TransientLedgerError,
    Unreachable,
)
from .models import PollStatus, SignedTransaction

# Base fee per signature on Solana
LAMPORTS_PER_SIGNATURE = 5000

# JSON-RPC error codes the node returns while it is catching up or pruning
TRANSIENT_RPC_CODES = {
    -32004,  # block not available
    -32005,  # node unhealthy / behind
    -32007,  # slot skipped
    -32014,  # block status not yet available
    -32016,  # minimum context slot not reached
}
TRANSIENT_HTTP_STATUSES = {429, 500, 502, 503, 504}


def load_keypair(path: str) -> Keypair:
    """
    Read a keypair file in the solana-keygen JSON format (array of 64 bytes)

    Raises:
        KeypairError: file unreadable or not a valid keypair
    """
    try:
        raw = json.loads(Path(path).read_text(encoding='utf-8'))
    except (OSError, ValueError) as e:
        raise KeypairError(f"reading keypair {path}: {e}") from e

    if not isinstance(raw, list) or len(raw) != 64:
        raise KeypairError(f"reading keypair {path}: expected a JSON array of 64 bytes")

    try:
        return Keypair.from_bytes(bytes(raw))
    except (ValueError, TypeError) as e:
        raise KeypairError(f"reading keypair {path}: {e}") from e


def parse_pubkey(text: str) -> Pubkey:
    """Parse a base58 public key, raising InvalidAccount if malformed"""
    try:
        return Pubkey.from_string(text.strip())
    except (ValueError, TypeError, AttributeError) as e:
        raise InvalidAccount(f"invalid public key {text!r}: {e}") from e


def classify_rpc_error(method: str, error: Dict) -> Exception:
    """
    Map a JSON-RPC error object to a ledger exception

    Args:
        method: RPC method that failed
        error: The "error" member of the response

    Returns:
        Exception instance (not raised)
    """
    code = error.get('code')
    message = str(error.get('message', ''))
    data = error.get('data') or {}
    detail = f"{method} rpc error {code}: {message}"

    if code in TRANSIENT_RPC_CODES:
        return TransientLedgerError(detail)

    haystack = (message + " " + json.dumps(data, default=str)).lower()
    if (isinstance(data, dict) and data.get('err') == "AlreadyProcessed") \
            or "already been processed" in haystack:
        return AlreadyProcessed(detail)

    if "insufficient" in haystack:
        return InsufficientFunds(detail)

    if code == -32602 and method == 'getBalance':
        return InvalidAccount(detail)

    return PermanentLedgerError(detail)


class LedgerClient:
    """Interface the transfer core depends on"""

    async def get_balance(self, account) -> int:
        raise NotImplementedError

    async def get_minimum_reserve(self) -> int:
        raise NotImplementedError

    async def build_and_sign(self, sender, receiver, amount: int) -> SignedTransaction:
        raise NotImplementedError

    async def submit(self, tx: SignedTransaction) -> str:
        raise NotImplementedError

    async def poll_status(self, handle: str) -> PollStatus:
        raise NotImplementedError

    async def close(self):
        pass


class SolanaRpcClient(LedgerClient):
    """
    Solana JSON-RPC client

    Reads at `finalized` commitment, so a balance observation never includes
    funds that could still be rolled back.
    """

    COMMITMENT = "finalized"

    def __init__(self, rpc_url: str, request_timeout: float = 30.0):
        self.rpc_url = rpc_url
        self.request_timeout = request_timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0
        self._last_valid_heights: Dict[str, int] = {}
        self._reserve: Optional[int] = None

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("✓ RPC session closed")

    async def _post(self, payload: Dict) -> Dict:
        """Send one JSON-RPC request and return the decoded response body"""
        await self._ensure_session()
        try:
            async with self._session.post(self.rpc_url, json=payload) as response:
                if response.status in TRANSIENT_HTTP_STATUSES:
                    raise TransientLedgerError(f"{payload['method']}: HTTP {response.status}")
                if response.status != 200:
                    raise PermanentLedgerError(f"{payload['method']}: HTTP {response.status}")
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise Unreachable(f"{payload['method']}: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise TransientLedgerError(f"{payload['method']}: undecodable response: {e}") from e

    async def _rpc(self, method: str, params: Optional[List] = None) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        body = await self._post(payload)

        if not isinstance(body, dict):
            raise PermanentLedgerError(f"{method}: malformed response {str(body)[:200]}")
        if body.get('error'):
            error = body['error']
            if not isinstance(error, dict):
                error = {'message': str(error)}
            raise classify_rpc_error(method, error)
        if 'result' not in body:
            raise PermanentLedgerError(f"{method}: malformed response {str(body)[:200]}")
        return body['result']

    @staticmethod
    def _malformed(method: str, result: Any, e: Exception) -> PermanentLedgerError:
        return PermanentLedgerError(
            f"{method}: malformed result {str(result)[:200]} ({type(e).__name__}: {e})"
        )

    async def get_balance(self, account) -> int:
        result = await self._rpc("getBalance", [str(account), {"commitment": self.COMMITMENT}])
        try:
            return int(result['value'])
        except (KeyError, TypeError, ValueError) as e:
            raise self._malformed("getBalance", result, e) from e

    async def get_minimum_reserve(self) -> int:
        """Rent-exempt minimum for a zero-data account plus the transfer fee"""
        if self._reserve is None:
            rent = await self._rpc("getMinimumBalanceForRentExemption", [0])
            try:
                self._reserve = int(rent) + LAMPORTS_PER_SIGNATURE
            except (TypeError, ValueError) as e:
                raise self._malformed("getMinimumBalanceForRentExemption", rent, e) from e
            logger.debug(f"Minimum reserve: {self._reserve} lamports")
        return self._reserve

    async def build_and_sign(self, sender, receiver, amount: int) -> SignedTransaction:
        if not isinstance(sender, Keypair):
            raise InvalidKeyError(f"sender is not a keypair: {type(sender).__name__}")
        if amount <= 0:
            raise InsufficientFunds(f"refusing to build transfer of {amount} lamports")

        latest = await self._rpc("getLatestBlockhash", [{"commitment": self.COMMITMENT}])
        try:
            blockhash = Hash.from_string(latest['value']['blockhash'])
            last_valid = int(latest['value']['lastValidBlockHeight'])
        except (KeyError, TypeError, ValueError) as e:
            raise self._malformed("getLatestBlockhash", latest, e) from e

        ix = transfer(TransferParams(
            from_pubkey=sender.pubkey(),
            to_pubkey=receiver,
            lamports=amount
        ))
        message = Message.new_with_blockhash([ix], sender.pubkey(), blockhash)
        try:
            tx = Transaction([sender], message, blockhash)
        except (ValueError, TypeError) as e:
            raise InvalidKeyError(f"signing failed: {e}") from e

        signature = str(tx.signatures[0])
        self._last_valid_heights[signature] = last_valid
        return SignedTransaction(
            signature=signature,
            payload=bytes(tx),
            last_valid_block_height=last_valid
        )

    async def submit(self, tx: SignedTransaction) -> str:
        """
        Send the signed transaction

        A resend of bytes the node already accepted (e.g. after a client-side
        timeout) comes back as AlreadyProcessed; that is the same transaction,
        so its signature is returned and confirmation proceeds as usual.
        """
        encoded = base64.b64encode(tx.payload).decode('ascii')
        try:
            signature = await self._rpc("sendTransaction", [
                encoded,
                {"encoding": "base64", "preflightCommitment": self.COMMITMENT},
            ])
        except AlreadyProcessed as e:
            logger.info(f"Transaction {tx.signature} already processed by the node: {e}")
            signature = tx.signature

        if not isinstance(signature, str) or not signature:
            raise PermanentLedgerError(f"sendTransaction: malformed result {str(signature)[:200]}")
        if tx.last_valid_block_height is not None:
            self._last_valid_heights[signature] = tx.last_valid_block_height
        return signature

    async def poll_status(self, handle: str) -> PollStatus:
        result = await self._rpc("getSignatureStatuses", [
            [handle],
            {"searchTransactionHistory": True},
        ])
        try:
            status = (result.get('value') or [None])[0]
        except (AttributeError, TypeError, IndexError) as e:
            raise self._malformed("getSignatureStatuses", result, e) from e
        if status is not None and not isinstance(status, dict):
            raise PermanentLedgerError(f"getSignatureStatuses: malformed status {str(status)[:200]}")

        if status is None:
            last_valid = self._last_valid_heights.get(handle)
            if last_valid is not None:
                height = await self._rpc("getBlockHeight", [{"commitment": self.COMMITMENT}])
                try:
                    height = int(height)
                except (TypeError, ValueError) as e:
                    raise self._malformed("getBlockHeight", height, e) from e
                if height > last_valid:
                    logger.warning(f"Blockhash expired for {handle} (height {height} > {last_valid})")
                    self._last_valid_heights.pop(handle, None)
                    return PollStatus.DROPPED
            return PollStatus.PENDING

        if status.get('err'):
            logger.error(f"✗ Transaction {handle} failed on chain: {status['err']}")
            self._last_valid_heights.pop(handle, None)
            return PollStatus.DROPPED

        if status.get('confirmationStatus') == "finalized":
            self._last_valid_heights.pop(handle, None)
            return PollStatus.FINALIZED

        return PollStatus.PENDING

"""
Thin JSON-RPC client for the Solana cluster running the auction program.

The API never settles anything itself: it submits transactions that were
signed by the wallet and reads back their status. Every failure, transport or
RPC level, surfaces as BlockchainError.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from app.core.config import settings
from app.core.errors import BlockchainError

logger = logging.getLogger(__name__)

COMMITMENTS = ("processed", "confirmed", "finalized")
LAMPORTS_PER_SOL = 1_000_000_000


class SolanaRpcClient:
    def __init__(
        self,
        url: str,
        commitment: str = "confirmed",
        timeout: float = 10.0,
        program_id: Optional[str] = None,
        epoch_length: int = 3600,
        http: Optional[requests.Session] = None,
    ):
        if commitment not in COMMITMENTS:
            raise ValueError(f"commitment must be one of {COMMITMENTS}")
        if epoch_length <= 0:
            raise ValueError("epoch_length must be positive")
        self.url = url
        self.commitment = commitment
        self.timeout = timeout
        self.program_id = program_id
        self.epoch_length = epoch_length
        self.http = http or requests.Session()
        self._request_id = 0

    @classmethod
    def from_settings(cls) -> "SolanaRpcClient":
        return cls(
            url=settings.SOLANA_RPC_URL,
            commitment=settings.SOLANA_COMMITMENT,
            timeout=settings.SOLANA_RPC_TIMEOUT_SECONDS,
            program_id=settings.SOLANA_PROGRAM_ID,
            epoch_length=settings.EPOCH_LENGTH_SECONDS,
        )

    def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params or []}
        try:
            response = self.http.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Solana RPC %s failed: %s", method, e)
            raise BlockchainError(f"Solana RPC unreachable: {method}")

        if response.status_code != 200:
            logger.warning("Solana RPC %s returned HTTP %s: %s", method, response.status_code, response.text)
            raise BlockchainError(f"Solana RPC {method} failed with HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError:
            raise BlockchainError(f"Solana RPC {method} returned invalid JSON")

        if data.get("error"):
            error = data["error"]
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise BlockchainError(f"Solana RPC {method} error: {message}")
        return data.get("result")

    def connect(self) -> Dict[str, Any]:
        """Probe the cluster once at startup."""
        health = self.health_check()
        logger.info("Connected to Solana RPC %s at slot %s", self.url, health["slot"])
        return health

    def health_check(self) -> Dict[str, Any]:
        started = time.monotonic()
        status = self._call("getHealth")
        slot = self._call("getSlot", [{"commitment": self.commitment}])
        return {
            "status": "healthy" if status == "ok" else "degraded",
            "slot": slot,
            "latency_ms": round((time.monotonic() - started) * 1000, 2),
        }

    def get_slot(self) -> int:
        return self._call("getSlot", [{"commitment": self.commitment}])

    def get_balance(self, address: str) -> float:
        """Balance of a wallet in SOL."""
        result = self._call("getBalance", [address, {"commitment": self.commitment}])
        if not isinstance(result, dict) or not isinstance(result.get("value"), int):
            raise BlockchainError("Solana RPC getBalance returned an unexpected result")
        return result["value"] / LAMPORTS_PER_SOL

    def get_account_info(self, address: str) -> Optional[Dict[str, Any]]:
        result = self._call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        if not result:
            return None
        return result.get("value")

    def get_program_account(self) -> Optional[Dict[str, Any]]:
        if not self.program_id:
            raise BlockchainError("SOLANA_PROGRAM_ID is not configured")
        return self.get_account_info(self.program_id)

    def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        """
        Look up a transaction by signature.

        Returns None while the cluster has not seen it, otherwise a dict
        with slot, confirmations, err and confirmation_status.
        """
        result = self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        values = (result or {}).get("value") or [None]
        status = values[0]
        if status is None:
            return None
        return {
            "slot": status.get("slot"),
            "confirmations": status.get("confirmations"),
            "err": status.get("err"),
            "confirmation_status": status.get("confirmationStatus"),
        }

    def send_transaction(self, serialized_b64: str) -> str:
        """Submit a wallet-signed transaction, return its signature."""
        signature = self._call(
            "sendTransaction",
            [serialized_b64, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )
        logger.info("Submitted transaction %s", signature)
        return signature

    def epoch_for(self, moment: Optional[datetime] = None) -> int:
        # naive datetimes are UTC throughout the app
        moment = moment or datetime.now(timezone.utc)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return math.floor(moment.timestamp() / self.epoch_length)

    def close(self) -> None:
        self.http.close()

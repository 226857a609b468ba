"""
Solana Wallet Authentication Utilities

This module handles the wallet-side cryptography for password-less login.
A Solana wallet address is the base58 encoding of an ED25519 public key, so
the address itself is the key used to verify the signature.

Authentication Flow:
1. Backend generates a random nonce -> generate_nonce()
2. Backend builds the text the wallet must sign -> create_sign_message()
3. Frontend signs the exact message bytes with the wallet (signMessage)
4. Frontend sends: walletAddress, signature, message
5. Backend recovers the nonce -> parse_signed_message()
   and checks the signature -> verify_signature()

The signature verification uses:
- ED25519 cryptography (Solana's signature algorithm) from `cryptography`
- base58 for addresses and signatures, as emitted by Solana wallets
"""

import base64
import binascii
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from app.core.config import settings
from app.core.errors import MessageFormatError
from app.core.logging_cfg import mask_wallet
from app.db.base import utc_now

logger = logging.getLogger(__name__)

NONCE_NUM_BYTES = 32  # 32 bytes = 64 hex characters
PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64

SIGN_MESSAGE_PREFIX = "Sign this message to authenticate: "
SIGN_MESSAGE_TEMPLATE = (
    SIGN_MESSAGE_PREFIX + "{nonce}\n"
    "\n"
    "Wallet: {wallet_address}\n"
    "This request will not trigger a blockchain transaction or cost any fees."
)

_NONCE_LINE = re.compile(r"^" + re.escape(SIGN_MESSAGE_PREFIX) + r"([0-9a-f]{64})[ \t]*$")
_WALLET_LINE = re.compile(r"^Wallet: (\S+)[ \t]*$", re.MULTILINE)
_BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


@dataclass
class SignatureVerification:
    is_valid: bool
    error: Optional[str] = None


@dataclass
class ParsedSignMessage:
    message: str
    nonce: str
    wallet_address: Optional[str] = None


def generate_nonce(num_bytes: int = NONCE_NUM_BYTES) -> str:
    """
    Generate a cryptographically secure random nonce for wallet authentication.

    Returns a lowercase hex string, which is URL-safe and embeds cleanly in
    the sign message.
    """
    if num_bytes <= 0:
        num_bytes = NONCE_NUM_BYTES
    return secrets.token_hex(num_bytes)


def generate_nonce_expiration(now: Optional[datetime] = None) -> datetime:
    """Expiry for a freshly issued nonce (NONCE_EXPIRY_SECONDS from now)."""
    return (now or utc_now()) + timedelta(seconds=settings.NONCE_EXPIRY_SECONDS)


def create_sign_message(wallet_address: str, nonce: str) -> str:
    """
    Build the human-readable message the wallet signs.

    The first line always carries the nonce; the text is deterministic for a
    given (wallet_address, nonce) pair.
    """
    return SIGN_MESSAGE_TEMPLATE.format(nonce=nonce, wallet_address=wallet_address)


def parse_signed_message(message: str) -> ParsedSignMessage:
    """
    Recover the nonce (and the wallet line, when present) from a sign message.

    Raises:
        MessageFormatError: if the message does not start with the nonce line
    """
    if not message or not isinstance(message, str):
        raise MessageFormatError("Invalid message format")

    first_line = message.split("\n", 1)[0].rstrip("\r")
    match = _NONCE_LINE.match(first_line)
    if not match:
        raise MessageFormatError("Invalid message format")

    wallet_match = _WALLET_LINE.search(message)
    return ParsedSignMessage(
        message=message,
        nonce=match.group(1),
        wallet_address=wallet_match.group(1) if wallet_match else None,
    )


def _decode_base58(value: str) -> bytes:
    """Helper: Decode base58 string to bytes."""
    return base58.b58decode(value.encode())


def _decode_signature(value: str) -> bytes:
    """
    Helper: Decode a wallet signature to its 64 raw bytes.

    Solana wallets hand out base58; some clients forward the raw bytes as
    base64 instead, so both are accepted as long as the length is right.
    """
    value = value.strip()
    try:
        decoded = _decode_base58(value)
        if len(decoded) == SIGNATURE_LENGTH:
            return decoded
    except ValueError:
        pass
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Signature must be base58 or base64 encoded")
    if len(decoded) != SIGNATURE_LENGTH:
        raise ValueError("Invalid signature length")
    return decoded


def is_valid_solana_address(address: str) -> bool:
    """Cheap shape check: base58 text that decodes to a 32 byte public key."""
    if not address or not isinstance(address, str):
        return False
    if not _BASE58_ADDRESS.match(address):
        return False
    try:
        return len(_decode_base58(address)) == PUBLIC_KEY_LENGTH
    except ValueError:
        return False


def verify_signature(message: str, signature: str, wallet_address: str) -> SignatureVerification:
    """
    Verify an ED25519 wallet signature over the exact message bytes.

    Malformed input is an ordinary invalid outcome, never an exception.

    Args:
        message: the exact text that was signed (UTF-8 encoded for checking)
        signature: base58 (or base64) encoded 64 byte signature
        wallet_address: base58 Solana address, i.e. the public key

    Returns:
        SignatureVerification(is_valid, error)

    Example:
        result = verify_signature(message, signature, "9WzDXwBb...")
        if result.is_valid:
            # issue the access token
    """
    if not message or not signature or not wallet_address:
        return SignatureVerification(False, "Missing required parameters")

    if not is_valid_solana_address(wallet_address):
        return SignatureVerification(False, "Invalid public key format")

    try:
        signature_bytes = _decode_signature(signature)
    except ValueError as exc:
        logger.warning("Failed to decode signature for %s: %s", mask_wallet(wallet_address), exc)
        return SignatureVerification(False, "Invalid signature format")

    public_key_bytes = _decode_base58(wallet_address)
    try:
        Ed25519PublicKey.from_public_bytes(public_key_bytes).verify(
            signature_bytes, message.encode("utf-8")
        )
    except InvalidSignature:
        logger.warning("Wallet signature verification failed for %s", mask_wallet(wallet_address))
        return SignatureVerification(False, "Invalid signature")
    except ValueError:
        return SignatureVerification(False, "Invalid public key format")

    logger.info("Wallet signature verified for %s", mask_wallet(wallet_address))
    return SignatureVerification(True)

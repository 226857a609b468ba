import base64
from datetime import datetime, timedelta

import base58
import pytest

from app.core import wallet_crypto
from app.core.config import settings
from app.core.errors import MessageFormatError


class TestNonceGeneration:
    def test_nonce_is_64_hex_chars(self):
        nonce = wallet_crypto.generate_nonce()
        assert len(nonce) == 64
        int(nonce, 16)

    def test_nonces_are_unique(self):
        nonces = {wallet_crypto.generate_nonce() for _ in range(200)}
        assert len(nonces) == 200

    def test_expiration_uses_configured_window(self):
        now = datetime(2024, 1, 1, 12, 0, 0)
        expires = wallet_crypto.generate_nonce_expiration(now)
        assert expires - now == timedelta(seconds=settings.NONCE_EXPIRY_SECONDS)


class TestSignMessage:
    def test_message_is_deterministic(self, wallet):
        nonce = wallet_crypto.generate_nonce()
        first = wallet_crypto.create_sign_message(wallet.address, nonce)
        second = wallet_crypto.create_sign_message(wallet.address, nonce)
        assert first == second
        assert first.startswith("Sign this message to authenticate: " + nonce)
        assert f"Wallet: {wallet.address}" in first

    def test_parse_recovers_nonce_and_wallet(self, wallet):
        nonce = wallet_crypto.generate_nonce()
        parsed = wallet_crypto.parse_signed_message(wallet_crypto.create_sign_message(wallet.address, nonce))
        assert parsed.nonce == nonce
        assert parsed.wallet_address == wallet.address

    def test_parse_accepts_bare_nonce_line(self):
        nonce = "ab" * 32
        parsed = wallet_crypto.parse_signed_message(f"Sign this message to authenticate: {nonce}")
        assert parsed.nonce == nonce
        assert parsed.wallet_address is None

    @pytest.mark.parametrize(
        "message",
        [
            "",
            "hello world",
            "Sign this message to authenticate: not-a-nonce",
            "Sign this message to authenticate: " + "ab" * 31,
            "Please sign: " + "ab" * 32,
            "\nSign this message to authenticate: " + "ab" * 32,
        ],
    )
    def test_parse_rejects_malformed_messages(self, message):
        with pytest.raises(MessageFormatError):
            wallet_crypto.parse_signed_message(message)


class TestSolanaAddress:
    def test_real_public_key_is_valid(self, wallet):
        assert wallet_crypto.is_valid_solana_address(wallet.address)

    @pytest.mark.parametrize(
        "address",
        [
            "",
            "short",
            "0OIl" * 10,  # characters outside the base58 alphabet
            base58.b58encode(b"\x01" * 16).decode(),  # decodes to 16 bytes
            "1" * 50,
        ],
    )
    def test_malformed_addresses_are_rejected(self, address):
        assert not wallet_crypto.is_valid_solana_address(address)


class TestVerifySignature:
    def test_valid_base58_signature(self, wallet):
        message = wallet_crypto.create_sign_message(wallet.address, wallet_crypto.generate_nonce())
        result = wallet_crypto.verify_signature(message, wallet.sign(message), wallet.address)
        assert result.is_valid
        assert result.error is None

    def test_valid_base64_signature(self, wallet):
        message = wallet_crypto.create_sign_message(wallet.address, wallet_crypto.generate_nonce())
        signature = base64.b64encode(wallet.sign_bytes(message)).decode()
        assert wallet_crypto.verify_signature(message, signature, wallet.address).is_valid

    def test_signature_from_other_key_is_invalid(self, wallet, other_wallet):
        message = wallet_crypto.create_sign_message(wallet.address, wallet_crypto.generate_nonce())
        result = wallet_crypto.verify_signature(message, other_wallet.sign(message), wallet.address)
        assert not result.is_valid
        assert result.error == "Invalid signature"

    def test_tampered_message_is_invalid(self, wallet):
        message = wallet_crypto.create_sign_message(wallet.address, wallet_crypto.generate_nonce())
        signature = wallet.sign(message)
        result = wallet_crypto.verify_signature(message + " ", signature, wallet.address)
        assert not result.is_valid

    @pytest.mark.parametrize("signature", ["", "!!!not-encoded!!!", base58.b58encode(b"\x00" * 10).decode()])
    def test_malformed_signature_does_not_raise(self, wallet, signature):
        result = wallet_crypto.verify_signature("Sign this message", signature, wallet.address)
        assert not result.is_valid
        assert result.error

    def test_malformed_wallet_does_not_raise(self, wallet):
        message = "Sign this message"
        result = wallet_crypto.verify_signature(message, wallet.sign(message), "not-a-wallet")
        assert not result.is_valid
        assert result.error == "Invalid public key format"

import os

# must be set before the app (and its settings) is imported
os.environ.setdefault("ENCODE_KEY", "test-encode-key-0123456789abcdef")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_WALLETS"] = ""
os.environ["SOLANA_CHECK_ON_STARTUP"] = "false"

from datetime import timedelta
from typing import Callable, Dict, Generator
from unittest.mock import Mock

import base58
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from app.core.config import settings
from app.core.dependencies import get_ledger
from app.db.base import Base, utc_now
from app.db.gateway import PersistenceGateway
from app.db.retry import RetryPolicy
from app.db.session import get_db
from app.services.blockchain import SolanaRpcClient


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite://"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db() -> Generator:
    """Override database dependency for testing"""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


class Wallet:
    """Real Ed25519 key pair whose base58 public key is a Solana address"""

    def __init__(self):
        self.private_key = Ed25519PrivateKey.generate()
        public_bytes = self.private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self.address = base58.b58encode(public_bytes).decode()

    def sign_bytes(self, message: str) -> bytes:
        return self.private_key.sign(message.encode("utf-8"))

    def sign(self, message: str) -> str:
        return base58.b58encode(self.sign_bytes(message)).decode()


@pytest.fixture(autouse=True)
def reset_database():
    """Fresh schema for every test"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    yield db
    db.close()


@pytest.fixture
def no_sleep_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=5.0, sleep=lambda seconds: None)


@pytest.fixture
def gateway(db_session, no_sleep_policy) -> PersistenceGateway:
    return PersistenceGateway(db_session, retry_policy=no_sleep_policy)


@pytest.fixture
def wallet() -> Wallet:
    return Wallet()


@pytest.fixture
def other_wallet() -> Wallet:
    return Wallet()


@pytest.fixture
def operator_wallet(monkeypatch) -> Wallet:
    operator = Wallet()
    monkeypatch.setattr(settings, "ADMIN_WALLETS", operator.address)
    return operator


@pytest.fixture
def make_timeslot(gateway) -> Callable:
    """Create a timeslot directly in the store; defaults to one running now"""

    def _make(start_offset_minutes: int = -30, duration_minutes: int = 60, total_energy: float = 1000.0, **kwargs):
        start = utc_now() + timedelta(minutes=start_offset_minutes)
        return gateway.create_timeslot(start, start + timedelta(minutes=duration_minutes), total_energy, **kwargs)

    return _make


@pytest.fixture
def client() -> TestClient:
    """Create a test client for the FastAPI application"""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ledger] = lambda: None
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def ledger(client) -> Mock:
    """Ledger client double injected into every request"""
    mock_ledger = Mock(spec=SolanaRpcClient)
    mock_ledger.epoch_length = 3600
    mock_ledger.get_balance.return_value = 1_000_000.0
    app.dependency_overrides[get_ledger] = lambda: mock_ledger
    return mock_ledger


@pytest.fixture
def login(client) -> Callable[[Wallet], Dict[str, str]]:
    """Run the init/verify handshake for a wallet and return auth headers"""

    def _login(user_wallet: Wallet) -> Dict[str, str]:
        init = client.post("/api/auth/init", json={"walletAddress": user_wallet.address})
        assert init.status_code == 200, init.text
        message = init.json()["data"]["message"]
        verify = client.post(
            "/api/auth/verify",
            json={
                "walletAddress": user_wallet.address,
                "signature": user_wallet.sign(message),
                "message": message,
            },
        )
        assert verify.status_code == 200, verify.text
        return {"Authorization": f"Bearer {verify.json()['data']['accessToken']}"}

    return _login

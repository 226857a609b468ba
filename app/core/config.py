from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv(override=True)

class Settings(BaseSettings):
    PROJECT_NAME: str = "Energy Auction API"
    # Application settings
    PORT: int = 8000
    HOST: str = "127.0.0.1"
    VERSION: str = "1.0.0"
    DOC_PASSWORD: str = ""
    CORS_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    # SSL settings
    SSL_KEY: str | None = None
    SSL_CERT: str | None = None

    # SQLAlchemy database URL
    DATABASE_URL: str = "sqlite:///./energy_auction.db"
    AUTO_CREATE_TABLES: bool = True

    # Retry policy for store operations
    DB_RETRY_MAX_ATTEMPTS: int = 3
    DB_RETRY_BASE_DELAY_SECONDS: float = 1.0
    DB_RETRY_MAX_DELAY_SECONDS: float = 5.0
    # Transaction limits
    DB_TX_MAX_WAIT_SECONDS: float = 5.0
    DB_TX_TIMEOUT_SECONDS: float = 10.0

    # Login configuration
    ENCODE_KEY: str | None = None
    ENCODE_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 86400 # 24 hours
    NONCE_EXPIRY_SECONDS: int = 300 # 5 minutes

    # comma separated operator wallets
    ADMIN_WALLETS: str = ""

    # Solana RPC
    SOLANA_RPC_URL: str = "https://api.devnet.solana.com"
    SOLANA_PROGRAM_ID: str | None = None
    SOLANA_COMMITMENT: str = "confirmed"
    SOLANA_RPC_TIMEOUT_SECONDS: float = 10.0
    EPOCH_LENGTH_SECONDS: int = 3600
    SOLANA_CHECK_ON_STARTUP: bool = False
    # reject orders the wallet cannot cover; needs the ledger client
    ORDER_BALANCE_CHECK: bool = True

    # Debug settings
    DEBUG: bool = False

    class Config:
        env_file = ".env"

    @property
    def admin_wallets(self) -> List[str]:
        return [w.strip() for w in self.ADMIN_WALLETS.split(",") if w.strip()]

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

# Instantiate the settings
settings = Settings()

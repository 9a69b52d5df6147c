# trust_engine/settings.py
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ledger
    RPC_URL: str = "http://127.0.0.1:8545"
    CHAIN_ID: int = 31337
    REGISTRY_ADDRESS: str
    IDENTITY_ADDRESS: str
    STAKING_ADDRESS: str
    FORWARDER_ADDRESS: str
    SYSTEM_PROGRAMS: List[str] = []
    SPONSOR_PK: Optional[str] = None
    RPC_TIMEOUT: int = 30
    CONFIRM_TIMEOUT: int = 120
    SPONSOR_GAS_LIMIT: int = 800000
    SPONSORED_TX_TTL_SECONDS: int = 3600
    EXPLORER_URL: str = "https://etherscan.io"

    # storage provider
    PINATA_JWT: Optional[str] = None
    PINATA_API_KEY: Optional[str] = None
    PINATA_API_SECRET: Optional[str] = None
    STORAGE_TIMEOUT: int = 60

    # custodial wallet provider
    CUSTODIAL_API_URL: str = "https://staging.crossmint.com/api/2025-06-09"
    CUSTODIAL_API_KEY: Optional[str] = None
    CUSTODIAL_TIMEOUT: int = 30

    # action links
    DATABASE_URL: str = "sqlite:///./data.db"
    ACTION_LINK_BASE_URL: str = "http://127.0.0.1:8000"
    ACTION_TOKEN_TTL_HOURS: int = 24
    TOKEN_EXPIRY_CHECK_MINUTES: int = 10

    HOST: str = "127.0.0.1"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

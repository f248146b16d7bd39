# evice/core/config.py
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Evice x402 Gateway"
    API_STR: str = "/api"

    # Comma-separated list of allowed browser origins ("*" allows all)
    CORS_ORIGINS: str = "*"

    # x402 payment layer
    X402_ENABLED: bool = True
    MY_EVM_WALLET_ADDRESS: Optional[str] = None  # recipient of all payments
    NEUROWEB_RPC: AnyHttpUrl = "https://lofar-testnet.origin-trail.network"
    X402_RPC_TIMEOUT_SECONDS: float = 10.0
    X402_PROTOCOL: str = "x402-neuroweb"
    X402_CURRENCY: str = "NEURO"
    X402_REFERENCE_TTL_SECONDS: int = 3600
    # Exact memo match; set false to accept the reference anywhere in tx data
    X402_STRICT_MEMO_MATCH: bool = True
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    # Durable ledger backend (Vercel KV / Upstash REST). Memory is used when unset.
    KV_REST_API_URL: Optional[str] = None
    KV_REST_API_TOKEN: Optional[str] = None

    # Knowledge asset lookup
    ASSET_STORE_URL: Optional[str] = None
    TOKENOMICS_UAL: str = "mock:did:dkg:otp:20430/tokenomics"
    ROADMAP_UAL: str = "mock:did:dkg:otp:20430/roadmap"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()

"""
config.py - Centralised settings for the trust engine
"""
from pydantic_settings import BaseSettings


class TrustSettings(BaseSettings):
    # DID format
    DID_METHOD: str = "anam"
    CHAIN_ID: int = 8453  # Base mainnet, used in eip155:<chainId>:<address>

    # Challenge Service
    CHALLENGE_TTL_SECONDS: int = 300
    CHALLENGE_BYTES: int = 32

    # VP Session Store
    VP_SESSION_TTL_SECONDS: int = 300
    VERIFIED_SESSION_GRACE_SECONDS: int = 30  # polling window after verification

    # Background sweep of expired challenges/sessions
    SWEEP_INTERVAL_SECONDS: float = 60.0

    # Verification Pipeline collaborators
    RESOLVER_TIMEOUT_SECONDS: float = 5.0

    # Presentation proof
    VP_DOMAIN: str = "anam.liberia"

    # Logging
    LOG_FORMAT: str = "text"  # text | json
    LOG_LEVEL: str = "INFO"

    class Config:
        env_prefix = "ANAM_"
        env_file = ".env"
        extra = "ignore"


settings = TrustSettings()

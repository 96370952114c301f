import os
from dotenv import load_dotenv
from dataclasses import dataclass
from functools import lru_cache

load_dotenv()


def _parse_bool(value: str, default: bool = True) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


def _parse_int(value: str, default: int) -> int:
    try:
        return int((value or "").strip())
    except ValueError:
        return default


def _parse_float(value: str, default: float) -> float:
    try:
        return float((value or "").strip())
    except ValueError:
        return default


@dataclass
class Settings:
    # MongoDB
    MONGO_URI: str
    MONGO_DB: str

    # chain
    RPC_URL: str
    CONTRACT_ADDRESS: str
    CONTRACT_DEPLOYMENT_BLOCK: int
    ENABLE_BLOCKCHAIN: bool

    # request pacing (endpoint "rpc")
    RPC_REQUESTS_PER_SECOND: float
    RPC_BURST_CAPACITY: int
    RPC_MAX_RETRIES: int

    # sync
    SYNC_BATCH_SIZE: int
    SYNC_MAX_BLOCK_RANGE: int
    SYNC_INTERVAL_SEC: float
    LIVE_POLL_INTERVAL_SEC: float
    RECONNECT_MAX_ATTEMPTS: int
    RECONNECT_BASE_DELAY_SEC: float

    # email
    EMAIL_HOST: str
    EMAIL_PORT: int
    EMAIL_USER: str
    EMAIL_PASS: str
    EMAIL_FROM: str
    FRONTEND_URL: str
    EXPLORER_TX_URL: str

    # admin endpoints
    ADMIN_API_KEY: str

    # generic
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings(
        # Mongo
        MONGO_URI=os.getenv("MONGO_URI", "mongodb://localhost:27017/vault_sync"),
        MONGO_DB=os.getenv("MONGO_DB", "vault_sync"),

        # Chain
        RPC_URL=os.getenv("RPC_URL", ""),
        CONTRACT_ADDRESS=os.getenv("CONTRACT_ADDRESS", ""),
        # 0 means "use the current head" on cold start
        CONTRACT_DEPLOYMENT_BLOCK=_parse_int(os.getenv("CONTRACT_DEPLOYMENT_BLOCK", ""), 0),
        ENABLE_BLOCKCHAIN=_parse_bool(os.getenv("ENABLE_BLOCKCHAIN", "")),

        RPC_REQUESTS_PER_SECOND=_parse_float(os.getenv("RPC_REQUESTS_PER_SECOND", ""), 5.0),
        RPC_BURST_CAPACITY=_parse_int(os.getenv("RPC_BURST_CAPACITY", ""), 5),
        RPC_MAX_RETRIES=_parse_int(os.getenv("RPC_MAX_RETRIES", ""), 3),

        SYNC_BATCH_SIZE=_parse_int(os.getenv("SYNC_BATCH_SIZE", ""), 50),
        SYNC_MAX_BLOCK_RANGE=_parse_int(os.getenv("SYNC_MAX_BLOCK_RANGE", ""), 100),
        SYNC_INTERVAL_SEC=_parse_float(os.getenv("SYNC_INTERVAL_SEC", ""), 600.0),
        LIVE_POLL_INTERVAL_SEC=_parse_float(os.getenv("LIVE_POLL_INTERVAL_SEC", ""), 4.0),
        RECONNECT_MAX_ATTEMPTS=_parse_int(os.getenv("RECONNECT_MAX_ATTEMPTS", ""), 5),
        RECONNECT_BASE_DELAY_SEC=_parse_float(os.getenv("RECONNECT_BASE_DELAY_SEC", ""), 5.0),

        # Email
        EMAIL_HOST=os.getenv("EMAIL_HOST", ""),
        EMAIL_PORT=_parse_int(os.getenv("EMAIL_PORT", ""), 587),
        EMAIL_USER=os.getenv("EMAIL_USER", ""),
        EMAIL_PASS=os.getenv("EMAIL_PASS", ""),
        EMAIL_FROM=os.getenv("EMAIL_FROM", ""),
        FRONTEND_URL=os.getenv("FRONTEND_URL", "http://localhost:3000"),
        EXPLORER_TX_URL=os.getenv("EXPLORER_TX_URL", "https://sepolia.etherscan.io/tx/"),

        ADMIN_API_KEY=os.getenv("ADMIN_API_KEY", ""),

        ENV=os.getenv("ENV", "dev"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )

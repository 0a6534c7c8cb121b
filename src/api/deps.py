import os
import secrets
from collections.abc import Iterator
from functools import lru_cache
from pathlib import Path

import httpx
from fastapi import Depends, Header, HTTPException, status

from src.adapters.clock import SystemClock
from src.adapters.geo import HeaderGeoLocator
from src.adapters.sqlite.store import SQLiteStore
from src.adapters.tasks import ThreadPoolTaskDispatcher
from src.adapters.user_agent import HeuristicUserAgentParser
from src.app_shell.rate_limit import RateLimiter
from src.components.campaigns import CredentialSetService, build_adapters, build_provider_config
from src.components.campaigns.ports import ProviderAdapterPort
from src.core.ports.time import TimePort
from src.core.services.visitor_hash import DailySaltProvider, VisitorHasher
from src.rules.loader import load_rules
from src.rules.models import Rules


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("SITEPULSE_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "sitepulse.db")
        self.rules_path = Path(os.environ.get("SITEPULSE_RULES_PATH", str(self.base_dir / "rules.yaml")))
        self.cron_secret = os.environ.get("CRON_SECRET", "")
        self.salt_secret = os.environ.get("SITEPULSE_SALT_SECRET", "")
        self.google_client_id = os.environ.get("GOOGLE_ADS_CLIENT_ID")
        self.google_client_secret = os.environ.get("GOOGLE_ADS_CLIENT_SECRET")
        self.google_developer_token = os.environ.get("GOOGLE_ADS_DEVELOPER_TOKEN")


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules() -> Rules:
    return load_rules(get_settings().rules_path)


# --- Store ---
@lru_cache
def get_store() -> SQLiteStore:
    settings = get_settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return SQLiteStore(settings.db_path)


# --- Adapters ---
@lru_cache
def get_clock() -> TimePort:
    return SystemClock()


@lru_cache
def get_dispatcher() -> ThreadPoolTaskDispatcher:
    return ThreadPoolTaskDispatcher()


@lru_cache
def get_rate_limiter() -> RateLimiter:
    return RateLimiter(get_rules().ingest.rate_limit, get_clock())


@lru_cache
def get_hasher() -> VisitorHasher:
    return VisitorHasher(DailySaltProvider(get_settings().salt_secret, get_clock()))


def get_geo_locator() -> HeaderGeoLocator:
    return HeaderGeoLocator()


def get_ua_parser() -> HeuristicUserAgentParser:
    return HeuristicUserAgentParser()


def get_provider_adapters(
    settings: Settings = Depends(get_settings),
    rules: Rules = Depends(get_rules),
) -> Iterator[dict[str, ProviderAdapterPort]]:
    """Provider adapters sharing one HTTP client for the request."""
    config = build_provider_config(
        rules.campaigns,
        google_client_id=settings.google_client_id,
        google_client_secret=settings.google_client_secret,
        google_developer_token=settings.google_developer_token,
    )
    client = httpx.Client(timeout=config.timeout_seconds)
    try:
        yield dict(build_adapters(config, client))
    finally:
        client.close()


# --- Component Services ---
def get_credential_set_service(
    store: SQLiteStore = Depends(get_store),
    clock: TimePort = Depends(get_clock),
) -> CredentialSetService:
    return CredentialSetService(store=store, time_port=clock)


# --- Auth ---
def require_cron_secret(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None),
) -> None:
    """Accept only `Authorization: Bearer <CRON_SECRET>`."""
    expected = f"Bearer {settings.cron_secret}"
    supplied = (authorization or "").encode()
    if not settings.cron_secret or not secrets.compare_digest(supplied, expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

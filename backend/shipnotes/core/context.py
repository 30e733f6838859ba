"""Service context: every long-lived client, built once per process.

The API builds one in its lifespan and stores it on ``app.state``; the
worker builds its own. Handlers receive it through ``get_services`` and
pass it down to service constructors. Nothing below creates clients
lazily at module scope.
"""

from dataclasses import dataclass

from fastapi import Request

from .config import Settings
from .vault import CredentialVault
from ..services.entitlements import EntitlementClient
from ..services.github_client import GitHubClient
from ..services.kv_store import RedisStore
from ..services.llm_client import LLMClient
from ..services.scheduling import ScheduleClient
from ..services.scraper_client import ScraperClient


@dataclass(frozen=True)
class ServiceContext:
    settings: Settings
    vault: CredentialVault
    store: RedisStore
    github: GitHubClient
    scraper: ScraperClient
    llm: LLMClient
    scheduler: ScheduleClient
    entitlements: EntitlementClient


def build_services(settings: Settings) -> ServiceContext:
    """Construct the context. Raises ``VaultKeyError`` on a bad encryption key."""
    return ServiceContext(
        settings=settings,
        vault=CredentialVault(settings.integration_encryption_key),
        store=RedisStore(settings.redis_url),
        github=GitHubClient(settings.github_api_url, timeout=settings.github_timeout_seconds),
        scraper=ScraperClient(settings.scraper_api_key, settings.scraper_api_url),
        llm=LLMClient(settings.llm_model, settings.llm_api_key, settings.llm_api_base),
        scheduler=ScheduleClient(
            settings.qstash_token,
            settings.qstash_url,
            callback_token=settings.schedule_callback_token,
        ),
        entitlements=EntitlementClient(settings.billing_api_key, settings.billing_api_url),
    )


def get_services(request: Request) -> ServiceContext:
    """FastAPI dependency returning the process-wide context."""
    return request.app.state.services

"""Shared test fixtures for the Shipnotes backend test suite.

All tests run against an in-memory SQLite database (one shared connection
via StaticPool). Tables are dropped and recreated before each test.

Outbound collaborators (Redis, GitHub, the scraper, the LLM gateway, the
scheduler and the billing service) are replaced by in-memory fakes wired
into a ``ServiceContext``; the API client receives the same context through
``dependency_overrides[get_services]``.
"""

import base64
import dataclasses
import os

# Configure the app before any imports read settings.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"
os.environ["REDIS_URL"] = ""
os.environ["INTEGRATION_ENCRYPTION_KEY"] = base64.b64encode(b"k" * 32).decode()
os.environ["PUBLIC_BASE_URL"] = "https://api.shipnotes.test"

import hashlib
import hmac
import json
import uuid
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from shipnotes.core.config import settings
from shipnotes.core.context import ServiceContext, get_services
from shipnotes.core.vault import CredentialVault
from shipnotes.database import Base, SessionLocal, engine, get_db
from shipnotes.exceptions import ProviderAuthError, StoreUnavailableError
from shipnotes.main import app
from shipnotes.middleware.request_context import _request_windows
from shipnotes.models.enums import MemberRole
from shipnotes.models.integration import Integration, Repository, RepositoryOutput
from shipnotes.models.organization import Member, Organization, User
from shipnotes.models.trigger import ContentTrigger
from shipnotes.services.entitlements import AI_CREDITS, EXTENDED_LOG_RETENTION
from shipnotes.services.trigger_service import normalize_source_config, normalize_targets, trigger_hash
from shipnotes.schemas.trigger import SourceConfig, TriggerTargets


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """In-memory stand-in for ``RedisStore`` with TTLs driven by a fake clock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.available = True
        self._values: dict = {}
        self._lists: dict = {}
        self._expiry: dict = {}

    @property
    def configured(self) -> bool:
        return True

    def is_available(self) -> bool:
        return self.available

    def _expire(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and self.clock() >= deadline:
            self._values.pop(key, None)
            self._lists.pop(key, None)
            self._expiry.pop(key, None)

    def _set(self, key: str, value, ttl_seconds: int) -> None:
        self._values[key] = value
        self._expiry[key] = self.clock() + ttl_seconds

    def _get(self, key: str):
        self._expire(key)
        return self._values.get(key)

    def ttl(self, key: str) -> Optional[float]:
        self._expire(key)
        deadline = self._expiry.get(key)
        return None if deadline is None else deadline - self.clock()

    def try_acquire_lock(self, key: str, ttl_seconds: int, token: str) -> bool:
        if not self.available:
            raise StoreUnavailableError("Key-value store is not available")
        if self._get(key) is not None:
            return False
        self._set(key, token, ttl_seconds)
        return True

    def extend_lock(self, key: str, token: str, ttl_seconds: int) -> bool:
        if not self.available or self._get(key) != token:
            return False
        self._expiry[key] = self.clock() + ttl_seconds
        return True

    def release_lock(self, key: str, token: str) -> bool:
        if not self.available or self._get(key) != token:
            return False
        self._values.pop(key, None)
        self._expiry.pop(key, None)
        return True

    def lock_holder(self, key: str) -> Optional[str]:
        return self._get(key)

    def set_progress(self, key: str, value: dict, ttl_seconds: int) -> bool:
        if not self.available:
            return False
        self._set(key, json.loads(json.dumps(value)), ttl_seconds)
        return True

    def get_progress(self, key: str) -> Optional[dict]:
        if not self.available:
            raise StoreUnavailableError("Key-value store is not available")
        return self._get(key)

    def append_log(self, list_keys, entry: dict, max_len: int, ttl_seconds: int) -> bool:
        if not self.available:
            return False
        serialized = json.loads(json.dumps(entry, default=str))
        for key in list_keys:
            self._expire(key)
            items = self._lists.setdefault(key, [])
            items.insert(0, serialized)
            del items[max_len:]
            self._expiry[key] = self.clock() + ttl_seconds
        return True

    def list_logs(self, key: str, max_len: int) -> list:
        if not self.available:
            return []
        self._expire(key)
        return list(self._lists.get(key, [])[:max_len])

    def remember_once(self, key: str, ttl_seconds: int) -> Optional[bool]:
        if not self.available:
            return None
        if self._get(key) is not None:
            return False
        self._set(key, "1", ttl_seconds)
        return True

    def forget(self, key: str) -> None:
        self._values.pop(key, None)
        self._expiry.pop(key, None)


class FakeGitHub:
    """Records calls; ``errors`` maps a method name to the exception it raises."""

    def __init__(self):
        self.calls: list = []
        self.errors: dict = {}
        self.valid_tokens = {"ghp_valid"}
        self.public_repos = {("acme", "widgets"), ("acme", "gadgets")}
        self.user_repos: list = []
        self.commits: list = [
            {
                "sha": "a1b2c3d4e5f6a7b8",
                "commit": {"message": "Add export to CSV\n\nCloses #12", "author": {"name": "Dana"}},
                "html_url": "https://github.com/acme/widgets/commit/a1b2c3d4",
            },
        ]
        self.releases: list = [
            {
                "tag_name": "v1.2.0",
                "name": "Spring release",
                "body": "CSV export",
                "html_url": "https://github.com/acme/widgets/releases/v1.2.0",
                "published_at": "2026-04-01T10:00:00Z",
            },
        ]

    def _maybe_raise(self, method: str) -> None:
        error = self.errors.get(method)
        if error is not None:
            raise error

    def get_authenticated_user(self, token: str) -> dict:
        self.calls.append(("get_authenticated_user", token))
        self._maybe_raise("get_authenticated_user")
        if token not in self.valid_tokens:
            raise ProviderAuthError("GitHub rejected the access token")
        return {"login": "dana"}

    def list_user_repositories(self, token: str) -> list:
        self.calls.append(("list_user_repositories", token))
        self._maybe_raise("list_user_repositories")
        return self.user_repos

    def get_repository(self, owner: str, repo: str, token: Optional[str] = None) -> dict:
        self.calls.append(("get_repository", owner, repo, token))
        self._maybe_raise("get_repository")
        if (owner, repo) not in self.public_repos:
            from shipnotes.services.github_client import GitHubAPIError
            raise GitHubAPIError("GitHub API error: Not Found", upstream_status=404)
        return {"full_name": f"{owner}/{repo}", "private": False}

    def list_commits(self, owner: str, repo: str, token: Optional[str] = None,
                     since: Optional[str] = None, limit: int = 30) -> list:
        self.calls.append(("list_commits", owner, repo, token))
        self._maybe_raise("list_commits")
        return self.commits

    def list_releases(self, owner: str, repo: str, token: Optional[str] = None, limit: int = 5) -> list:
        self.calls.append(("list_releases", owner, repo, token))
        self._maybe_raise("list_releases")
        return self.releases


class FakeScraper:
    def __init__(self):
        self.markdown = "# Acme\n\nAcme builds widgets for small teams."
        self.error: Optional[Exception] = None
        self.calls: list = []

    def scrape_markdown(self, url: str) -> str:
        from shipnotes.services.scraper_client import ScrapeError, is_valid_http_url

        self.calls.append(url)
        if not is_valid_http_url(url):
            raise ScrapeError("Invalid URL", retriable=False)
        if self.error is not None:
            raise self.error
        return self.markdown


class FakeLLM:
    """Answers brand-extraction and changelog prompts with canned objects."""

    def __init__(self):
        self.brand = {
            "companyName": "Acme",
            "companyDescription": "Acme builds widgets for small teams.",
            "toneProfile": "Professional",
            "customTone": "Plain and direct",
            "audience": "Operations leads",
        }
        self.content = {"title": "What's new in Acme", "markdown": "## Features\n\n- CSV export"}
        self.error: Optional[Exception] = None
        self.calls: list = []

    def complete_json(self, system: str, prompt: str, max_tokens: int = 2048) -> dict:
        self.calls.append((system, prompt))
        if self.error is not None:
            raise self.error
        return dict(self.brand) if "companyName" in system else dict(self.content)


class FakeScheduler:
    def __init__(self):
        self.schedules: dict = {}
        self.deleted: list = []
        self.fail_with: Optional[Exception] = None

    def upsert_schedule(self, schedule_id: str, cron: str, destination: str, body: dict) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.schedules[schedule_id] = {"cron": cron, "destination": destination, "body": body}
        return schedule_id

    def delete_schedule(self, schedule_id: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.deleted.append(schedule_id)
        self.schedules.pop(schedule_id, None)


class FakeEntitlements:
    def __init__(self):
        self.features = {AI_CREDITS: True, EXTENDED_LOG_RETENTION: False}
        self.calls: list = []

    def is_allowed(self, organization_id: str, feature_id: str) -> bool:
        self.calls.append((organization_id, feature_id))
        return self.features.get(feature_id, False)

    def has_ai_credits(self, organization_id: str) -> bool:
        return self.is_allowed(organization_id, AI_CREDITS)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _fresh_schema():
    """Recreate every table before each test for isolation."""
    from shipnotes import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock) -> FakeStore:
    return FakeStore(clock)


@pytest.fixture()
def services(store) -> ServiceContext:
    """Service context with every outbound client faked."""
    test_settings = settings.model_copy(update={
        "schedule_callback_token": "callback-secret",
        "workflow_max_attempts": 3,
        "workflow_retry_backoff_seconds": 0,
    })
    return ServiceContext(
        settings=test_settings,
        vault=CredentialVault(test_settings.integration_encryption_key),
        store=store,
        github=FakeGitHub(),
        scraper=FakeScraper(),
        llm=FakeLLM(),
        scheduler=FakeScheduler(),
        entitlements=FakeEntitlements(),
    )


def with_settings(services: ServiceContext, **overrides) -> ServiceContext:
    """Copy of *services* with some settings replaced."""
    return dataclasses.replace(services, settings=services.settings.model_copy(update=overrides))


@pytest.fixture()
def client(db, services):
    """FastAPI TestClient with the DB and service context overridden."""

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_services] = lambda: services
    _request_windows.clear()  # Reset rate limiter so tests don't hit 429
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

def make_organization(db, slug: str = "acme", owner_id: str = "user-1", role: str = MemberRole.OWNER.value) -> Organization:
    if db.get(User, owner_id) is None:
        db.add(User(id=owner_id, name=owner_id, email=f"{owner_id}@example.com"))
    organization = Organization(id=str(uuid.uuid4()), name=slug.title(), slug=slug)
    db.add(organization)
    db.flush()
    db.add(Member(id=str(uuid.uuid4()), organization_id=organization.id, user_id=owner_id, role=role))
    db.commit()
    return organization


def make_repository(
    db,
    services: ServiceContext,
    organization: Organization,
    owner: str = "acme",
    repo: str = "widgets",
    secret: str = "whsec-test",
    token: Optional[str] = None,
    integration_enabled: bool = True,
    repository_enabled: bool = True,
) -> Repository:
    """Integration with one repository and an enabled changelog output."""
    integration = Integration(
        id=str(uuid.uuid4()),
        organization_id=organization.id,
        provider="github",
        display_name=f"{owner}/{repo}",
        encrypted_token=services.vault.encrypt(token) if token else None,
        enabled=integration_enabled,
    )
    db.add(integration)
    db.flush()
    repository = Repository(
        id=str(uuid.uuid4()),
        integration_id=integration.id,
        owner=owner,
        repo=repo,
        enabled=repository_enabled,
        encrypted_webhook_secret=services.vault.encrypt(secret) if secret else None,
    )
    db.add(repository)
    db.flush()
    db.add(RepositoryOutput(
        id=str(uuid.uuid4()), repository_id=repository.id, output_type="changelog", enabled=True,
    ))
    db.commit()
    return repository


def make_trigger(
    db,
    organization: Organization,
    repository_ids: list,
    event_types: Optional[list] = None,
    source_type: str = "github_webhook",
    output_type: str = "changelog",
    enabled: bool = True,
) -> ContentTrigger:
    source_config = normalize_source_config(SourceConfig(event_types=event_types or ["release"]))
    targets = normalize_targets(TriggerTargets(repository_ids=repository_ids))
    trigger = ContentTrigger(
        id=str(uuid.uuid4()),
        organization_id=organization.id,
        source_type=source_type,
        source_config=source_config,
        targets=targets,
        output_type=output_type,
        dedupe_hash=trigger_hash(source_type, source_config, targets, output_type),
        enabled=enabled,
    )
    db.add(trigger)
    db.commit()
    return trigger


def sign(body: bytes, secret: str = "whsec-test") -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def release_payload(action: str = "published", full_name: str = "acme/widgets", draft: bool = False) -> dict:
    return {
        "action": action,
        "release": {
            "tag_name": "v1.2.0",
            "name": "Spring release",
            "body": "CSV export",
            "draft": draft,
            "prerelease": False,
            "published_at": "2026-04-01T10:00:00Z",
            "html_url": f"https://github.com/{full_name}/releases/v1.2.0",
        },
        "repository": {"full_name": full_name, "default_branch": "main", "stargazers_count": 3},
        "sender": {"login": "dana"},
    }

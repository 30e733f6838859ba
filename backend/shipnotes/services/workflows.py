"""Built-in workflows: brand analysis and content generation.

Every step is safe to run twice with the same input. Writes are upserts
keyed by organization (brand settings) or by run id (posts). Steps add to
the session but never commit; the engine commits a step's writes together
with its step-log record.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.context import ServiceContext
from ..exceptions import ProviderAuthError, ProviderRateLimitedError, VaultError
from ..models.content import BrandSettings, Post
from ..models.enums import IntegrationType, LogDirection, LogStatus, OutputType, RunStatus, ToneProfile
from ..models.organization import Organization
from ..models.trigger import ContentTrigger
from ..models.workflow import WorkflowRun
from ..repositories.integration_repository import OutputRepository, RepositoryRepository
from ..schemas.webhook import WebhookLogEntry
from ..schemas.workflow import BrandExtraction, GeneratedContent
from .github_client import GitHubAPIError
from .llm_client import LLMError
from .scraper_client import ScrapeError
from .webhook_logs import append_webhook_log
from .workflow_engine import (
    FatalStepError, RetriableStepError, Step, StepContext, WorkflowDefinition,
    WorkflowEngine, register,
)

logger = logging.getLogger(__name__)

BRAND_ANALYSIS = "brand_analysis"
CONTENT_GENERATION = "content_generation"

# Step outputs are persisted; page content beyond this is not useful to the model anyway.
_MAX_SCRAPED_CHARS = 30000
_ACTIVITY_WINDOW_DAYS = 7
DEFAULT_TONE = ToneProfile.CONVERSATIONAL.value


# ---------------------------------------------------------------------------
# Brand analysis: scraping -> extracting -> saving
# ---------------------------------------------------------------------------

BRAND_EXTRACTION_PROMPT = (
    "You analyse company websites to capture their brand voice. "
    "Reply with a single JSON object with exactly these keys: "
    '"companyName" (string), "companyDescription" (2-3 sentences), '
    '"toneProfile" (one of "Conversational", "Professional", "Casual", "Formal"), '
    '"customTone" (short free-text description of the tone, or null), '
    '"audience" (who the company writes for).'
)


def _scrape_website(ctx: StepContext) -> dict:
    url = ctx.payload.get("url", "")
    try:
        markdown = ctx.services.scraper.scrape_markdown(url)
    except ScrapeError as e:
        if e.retriable:
            raise RetriableStepError(str(e)) from e
        raise FatalStepError(str(e)) from e
    return {"url": url, "markdown": markdown[:_MAX_SCRAPED_CHARS]}


def _extract_brand_info(ctx: StepContext) -> dict:
    markdown = ctx.outputs["scrape"]["markdown"]
    try:
        raw = ctx.services.llm.complete_json(
            BRAND_EXTRACTION_PROMPT,
            f"Website content:\n\n{markdown}",
            max_tokens=1024,
        )
        extraction = BrandExtraction.model_validate(raw)
    except LLMError as e:
        if e.retriable:
            raise RetriableStepError("Brand extraction failed") from e
        raise FatalStepError(str(e)) from e
    except PydanticValidationError as e:
        raise RetriableStepError("Model returned an unexpected structure") from e
    return extraction.model_dump(mode="json")


def _save_brand_settings(ctx: StepContext) -> dict:
    organization = ctx.db.get(Organization, ctx.organization_id)
    if organization is None:
        raise FatalStepError("Organization not found")

    extraction = ctx.outputs["extract"]
    organization.website_url = ctx.outputs["scrape"]["url"]

    settings_row = (
        ctx.db.query(BrandSettings)
        .filter(BrandSettings.organization_id == ctx.organization_id)
        .first()
    )
    if settings_row is None:
        settings_row = BrandSettings(id=str(uuid.uuid4()), organization_id=ctx.organization_id)
        ctx.db.add(settings_row)

    settings_row.company_name = extraction["companyName"]
    settings_row.company_description = extraction["companyDescription"]
    settings_row.tone_profile = extraction["toneProfile"]
    settings_row.custom_tone = extraction.get("customTone")
    settings_row.audience = extraction["audience"]

    return {"organization_id": ctx.organization_id, **extraction}


BRAND_ANALYSIS_WORKFLOW = register(WorkflowDefinition(
    workflow_type=BRAND_ANALYSIS,
    steps=(
        Step("scrape", "scraping", _scrape_website),
        Step("extract", "extracting", _extract_brand_info),
        Step("save", "saving", _save_brand_settings),
    ),
))


def start_brand_analysis(engine: WorkflowEngine, organization_id: str, url: str) -> WorkflowRun:
    return engine.start(BRAND_ANALYSIS_WORKFLOW, organization_id, {"url": url.strip()})


# ---------------------------------------------------------------------------
# Content generation: fetch trigger, repositories, brand -> draft -> save post
# ---------------------------------------------------------------------------

CHANGELOG_PROMPT = (
    "You write product changelogs from repository activity. "
    "Group changes under headings such as Features, Improvements and Fixes, "
    "skip chores and merge noise, and write for end users rather than engineers. "
    "Match the brand voice you are given. "
    'Reply with a single JSON object: {"title": string, "markdown": string}.'
)

_PLACEHOLDER_LABELS = {
    OutputType.BLOG_POST.value: "Blog post",
    OutputType.TWITTER_POST.value: "Twitter post",
    OutputType.LINKEDIN_POST.value: "LinkedIn post",
    OutputType.INVESTOR_UPDATE.value: "Investor update",
}


def _fetch_trigger(ctx: StepContext) -> dict:
    trigger = (
        ctx.db.query(ContentTrigger)
        .filter(
            ContentTrigger.id == ctx.payload.get("trigger_id"),
            ContentTrigger.organization_id == ctx.organization_id,
        )
        .first()
    )
    if trigger is None:
        raise FatalStepError("Trigger not found")
    return {
        "trigger_id": trigger.id,
        "output_type": trigger.output_type,
        "output_config": trigger.output_config or {},
        "repository_ids": trigger.repository_ids,
    }


def _fetch_repositories(ctx: StepContext) -> dict:
    trigger = ctx.outputs["fetch-trigger"]
    repo_ids = ctx.payload.get("repository_ids") or trigger["repository_ids"]
    output_type = trigger["output_type"]
    outputs = OutputRepository(ctx.db)

    since = (datetime.now(timezone.utc) - timedelta(days=_ACTIVITY_WINDOW_DAYS)).isoformat()
    collected: list[dict] = []

    for repository in RepositoryRepository(ctx.db).list_for_organization(ctx.organization_id, repo_ids):
        integration = repository.integration
        if not repository.enabled or integration is None or not integration.enabled:
            continue
        output = outputs.find(repository.id, output_type)
        if output is not None and not output.enabled:
            continue

        try:
            token = ctx.services.vault.decrypt_optional(integration.encrypted_token)
        except VaultError as e:
            raise FatalStepError("Stored credentials could not be decrypted") from e

        try:
            commits = ctx.services.github.list_commits(
                repository.owner, repository.repo, token=token, since=since
            )
            releases = ctx.services.github.list_releases(repository.owner, repository.repo, token=token)
        except ProviderRateLimitedError as e:
            raise RetriableStepError("GitHub rate limit exceeded") from e
        except ProviderAuthError as e:
            raise FatalStepError("GitHub rejected the stored token") from e
        except GitHubAPIError as e:
            if e.upstream_status == 404:
                raise FatalStepError(f"Repository {repository.full_name} is not accessible") from e
            raise RetriableStepError("GitHub API request failed") from e

        collected.append({
            "id": repository.id,
            "full_name": repository.full_name,
            "commits": [_summarize_commit(c) for c in commits],
            "releases": [_summarize_release(r) for r in releases],
        })

    if not collected:
        raise FatalStepError("No enabled target repositories")
    return {"repositories": collected, "event": ctx.payload.get("event")}


def _summarize_commit(commit: dict) -> dict:
    details = commit.get("commit") or {}
    return {
        "sha": (commit.get("sha") or "")[:12],
        "message": (details.get("message") or "")[:500],
        "author": (details.get("author") or {}).get("name"),
        "url": commit.get("html_url"),
    }


def _summarize_release(release: dict) -> dict:
    return {
        "tag_name": release.get("tag_name"),
        "name": release.get("name"),
        "body": (release.get("body") or "")[:4000],
        "url": release.get("html_url"),
        "published_at": release.get("published_at"),
    }


def _fetch_brand_settings(ctx: StepContext) -> dict:
    row = (
        ctx.db.query(BrandSettings)
        .filter(BrandSettings.organization_id == ctx.organization_id)
        .first()
    )
    if row is not None:
        return {
            "company_name": row.company_name,
            "company_description": row.company_description,
            "tone_profile": row.tone_profile or DEFAULT_TONE,
            "custom_tone": row.custom_tone,
            "custom_instructions": row.custom_instructions,
            "audience": row.audience,
        }

    organization = ctx.db.get(Organization, ctx.organization_id)
    return {
        "company_name": organization.name if organization else None,
        "company_description": None,
        "tone_profile": DEFAULT_TONE,
        "custom_tone": None,
        "custom_instructions": None,
        "audience": None,
    }


def _build_activity_prompt(brand: dict, activity: dict) -> str:
    lines = ["Brand voice:"]
    for key in ("company_name", "company_description", "tone_profile", "custom_tone", "audience", "custom_instructions"):
        if brand.get(key):
            lines.append(f"- {key.replace('_', ' ')}: {brand[key]}")

    event = activity.get("event")
    if event:
        lines.append(f"\nTriggering event: {event.get('type')} on {event.get('repository')}")
        release = event.get("release")
        if release:
            lines.append(f"Release {release.get('tag_name')}: {release.get('name') or ''}\n{release.get('body') or ''}")

    for repo in activity["repositories"]:
        lines.append(f"\nRepository {repo['full_name']}")
        for release in repo["releases"]:
            lines.append(f"  Release {release['tag_name']}: {release.get('name') or ''}")
        for commit in repo["commits"]:
            first_line = commit["message"].splitlines()[0] if commit["message"] else ""
            lines.append(f"  - {first_line} ({commit['sha']})")
    return "\n".join(lines)


def _generate_content(ctx: StepContext) -> dict:
    output_type = ctx.outputs["fetch-trigger"]["output_type"]
    activity = ctx.outputs["fetch-repositories"]
    brand = ctx.outputs["fetch-brand-settings"]
    repo_names = ", ".join(r["full_name"] for r in activity["repositories"])

    if output_type != OutputType.CHANGELOG.value:
        label = _PLACEHOLDER_LABELS.get(output_type, output_type)
        return {
            "title": f"{label} draft for {repo_names}",
            "markdown": f"# {label}\n\nDraft pending for recent activity in {repo_names}.",
        }

    try:
        raw = ctx.services.llm.complete_json(CHANGELOG_PROMPT, _build_activity_prompt(brand, activity))
        content = GeneratedContent.model_validate(raw)
    except LLMError as e:
        if e.retriable:
            raise RetriableStepError("Content generation failed") from e
        raise FatalStepError(str(e)) from e
    except PydanticValidationError as e:
        raise RetriableStepError("Model returned an unexpected structure") from e
    return content.model_dump()


def _save_post(ctx: StepContext) -> dict:
    draft = ctx.outputs["generate-content"]
    trigger = ctx.outputs["fetch-trigger"]
    activity = ctx.outputs["fetch-repositories"]

    post = ctx.db.query(Post).filter(Post.workflow_run_id == ctx.run.id).first()
    if post is None:
        post = Post(
            id=str(uuid.uuid4()),
            organization_id=ctx.organization_id,
            workflow_run_id=ctx.run.id,
        )
        ctx.db.add(post)

    post.title = draft["title"]
    post.markdown = draft["markdown"]
    post.content = draft["markdown"]
    post.content_type = trigger["output_type"]
    post.source_metadata = {
        "trigger_id": trigger["trigger_id"],
        "repositories": [r["full_name"] for r in activity["repositories"]],
        "event": activity.get("event"),
        "output_config": trigger["output_config"],
    }
    return {"post_id": post.id, "title": post.title}


def _log_content_outcome(services: ServiceContext, run: WorkflowRun) -> None:
    payload = run.payload or {}
    succeeded = run.status == RunStatus.COMPLETED.value
    entry = WebhookLogEntry(
        reference_id=run.id,
        title="Content generated" if succeeded else "Content generation failed",
        integration_type=IntegrationType(payload.get("log_integration_type", IntegrationType.MANUAL.value)),
        direction=LogDirection.OUTGOING,
        status=LogStatus.SUCCESS if succeeded else LogStatus.FAILED,
        status_code=200 if succeeded else 500,
        error_message=None if succeeded else run.error_message,
        payload={"trigger_id": run.correlation_id, "result": run.result},
    )
    append_webhook_log(
        services,
        run.organization_id,
        payload.get("integration_id") or run.correlation_id or "workflow",
        entry,
    )


CONTENT_GENERATION_WORKFLOW = register(WorkflowDefinition(
    workflow_type=CONTENT_GENERATION,
    steps=(
        Step("fetch-trigger", "fetching", _fetch_trigger),
        Step("fetch-repositories", "fetching", _fetch_repositories),
        Step("fetch-brand-settings", "drafting", _fetch_brand_settings),
        Step("generate-content", "drafting", _generate_content),
        Step("save-post", "saving", _save_post),
    ),
    scoped=True,
    on_finished=_log_content_outcome,
))


def start_content_generation(
    engine: WorkflowEngine,
    trigger: ContentTrigger,
    log_integration_type: IntegrationType,
    integration_id: Optional[str] = None,
    repository_ids: Optional[list[str]] = None,
    event: Optional[dict[str, Any]] = None,
) -> WorkflowRun:
    """Queue a content run for *trigger*, correlated by the trigger id."""
    payload: dict[str, Any] = {
        "trigger_id": trigger.id,
        "log_integration_type": log_integration_type.value,
    }
    if integration_id:
        payload["integration_id"] = integration_id
    if repository_ids:
        payload["repository_ids"] = repository_ids
    if event:
        payload["event"] = event
    return engine.start(
        CONTENT_GENERATION_WORKFLOW, trigger.organization_id, payload, correlation_id=trigger.id
    )

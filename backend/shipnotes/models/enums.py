"""Closed vocabularies shared by models, schemas and services."""

from enum import Enum


class Provider(str, Enum):
    """Webhook providers that can address the gateway."""
    GITHUB = "github"
    LINEAR = "linear"
    SLACK = "slack"


class OutputType(str, Enum):
    CHANGELOG = "changelog"
    BLOG_POST = "blog_post"
    TWITTER_POST = "twitter_post"
    LINKEDIN_POST = "linkedin_post"
    INVESTOR_UPDATE = "investor_update"


class PublishDestination(str, Enum):
    WEBFLOW = "webflow"
    FRAMER = "framer"
    CUSTOM = "custom"


class TriggerSourceType(str, Enum):
    GITHUB_WEBHOOK = "github_webhook"
    LINEAR_WEBHOOK = "linear_webhook"
    CRON = "cron"
    MANUAL = "manual"

    @property
    def is_webhook(self) -> bool:
        return self in (TriggerSourceType.GITHUB_WEBHOOK, TriggerSourceType.LINEAR_WEBHOOK)


class WebhookEventType(str, Enum):
    RELEASE = "release"
    PUSH = "push"
    STAR = "star"


class CronFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class IntegrationType(str, Enum):
    """Log-list namespace of a webhook log entry."""
    GITHUB = "github"
    LINEAR = "linear"
    SLACK = "slack"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class LogDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class LogStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class ToneProfile(str, Enum):
    CONVERSATIONAL = "Conversational"
    PROFESSIONAL = "Professional"
    CASUAL = "Casual"
    FORMAL = "Formal"


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"

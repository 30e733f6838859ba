"""Content trigger model."""

from sqlalchemy import Column, String, DateTime, Boolean, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from ..database import Base


class ContentTrigger(Base):
    """
    Binds a source (webhook event filter, cron cadence, or manual) to
    target repositories and an output content type.

    ``dedupe_hash`` is the sha256 of the normalized configuration and is
    unique per organization. ``schedule_id`` is set while an external cron
    schedule is registered for the trigger.
    """

    __tablename__ = "content_triggers"
    __table_args__ = (
        UniqueConstraint("organization_id", "dedupe_hash", name="uq_trigger_org_hash"),
    )

    id = Column(String(50), primary_key=True)
    organization_id = Column(String(50), ForeignKey("organizations.id"), nullable=False, index=True)

    # Allowed values: github_webhook, linear_webhook, cron, manual
    source_type = Column(String(30), nullable=False)
    # {"event_types": [...]} or {"cron": {...}}
    source_config = Column(JSON, nullable=False, default=dict)
    # {"repository_ids": [...]}
    targets = Column(JSON, nullable=False, default=dict)

    output_type = Column(String(50), nullable=False)
    output_config = Column(JSON, nullable=True)

    dedupe_hash = Column(String(64), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    schedule_id = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def repository_ids(self) -> list[str]:
        return list((self.targets or {}).get("repository_ids", []))

    @property
    def event_types(self) -> list[str]:
        return list((self.source_config or {}).get("event_types", []))

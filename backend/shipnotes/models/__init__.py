"""Database models."""

from .organization import Organization, User, Member
from .integration import Integration, Repository, RepositoryOutput
from .trigger import ContentTrigger
from .content import BrandSettings, Post
from .workflow import WorkflowRun, WorkflowStep

__all__ = [
    "Organization", "User", "Member",
    "Integration", "Repository", "RepositoryOutput",
    "ContentTrigger",
    "BrandSettings", "Post",
    "WorkflowRun", "WorkflowStep",
]

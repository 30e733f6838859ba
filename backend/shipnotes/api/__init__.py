"""API routes."""

from .content import router as content_router
from .integrations import router as integrations_router
from .organizations import router as organizations_router
from .triggers import router as triggers_router, schedule_router
from .webhooks import router as webhooks_router
from .workflows import router as workflows_router

__all__ = [
    "content_router",
    "integrations_router",
    "organizations_router",
    "triggers_router",
    "schedule_router",
    "webhooks_router",
    "workflows_router",
]

"""Billing entitlement lookups.

Answers "may organization X use feature Y right now". Decisions are not
cached: plan changes apply to the very next request.
"""

import logging

import requests

logger = logging.getLogger(__name__)

EXTENDED_LOG_RETENTION = "extended_log_retention"
AI_CREDITS = "ai_credits"


class EntitlementLookupError(Exception):
    """The billing service could not give an answer."""


class EntitlementClient:
    def __init__(self, api_key: str, api_url: str, timeout: int = 5):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_url)

    def is_allowed(self, organization_id: str, feature_id: str) -> bool:
        """Ask the billing service.

        An unconfigured billing service means every organization is on the
        base plan, so the answer is False.

        Raises:
            EntitlementLookupError: the service failed, or replied with something
                other than a JSON object.
        """
        if not self.configured:
            return False

        try:
            response = requests.post(
                f"{self.api_url}/check",
                json={"customer_id": organization_id, "feature_id": feature_id},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise EntitlementLookupError(f"Entitlement check failed: {type(exc).__name__}") from exc

        if not isinstance(body, dict):
            raise EntitlementLookupError(
                f"Entitlement check returned {type(body).__name__}, expected an object"
            )
        return bool(body.get("allowed", False))

    def has_ai_credits(self, organization_id: str) -> bool:
        """Whether a content run may start.

        An unconfigured billing service or a failed lookup allows the run.
        """
        if not self.configured:
            return True
        try:
            return self.is_allowed(organization_id, AI_CREDITS)
        except EntitlementLookupError as e:
            logger.warning(
                "AI credit check failed, allowing run: %s", e,
                extra={"organization_id": organization_id},
            )
            return True

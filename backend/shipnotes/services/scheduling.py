"""Cron expressions and the external schedule service.

Schedules are registered with a QStash-compatible HTTP API. The schedule
id is derived from the trigger id, so registering the same trigger twice
overwrites the existing schedule instead of adding a second one.
"""

import logging
from typing import Optional

import requests

from ..exceptions import UpstreamServiceError
from ..models.enums import CronFrequency
from ..schemas.trigger import CronConfig

logger = logging.getLogger(__name__)


def build_cron_expression(cron: CronConfig) -> str:
    """Translate a cadence into a five-field cron expression.

    Minute and hour default to 0. Weekly schedules use day-of-week
    (default Monday), monthly schedules use day-of-month (default 1st),
    daily schedules use neither.

    >>> build_cron_expression(CronConfig(frequency="weekly", hour=9, minute=0, day_of_week=1))
    '0 9 * * 1'
    """
    minute = cron.minute if cron.minute is not None else 0
    hour = cron.hour if cron.hour is not None else 0

    if cron.frequency == CronFrequency.WEEKLY:
        day_of_week = cron.day_of_week if cron.day_of_week is not None else 1
        return f"{minute} {hour} * * {day_of_week}"
    if cron.frequency == CronFrequency.MONTHLY:
        day_of_month = cron.day_of_month if cron.day_of_month is not None else 1
        return f"{minute} {hour} {day_of_month} * *"
    return f"{minute} {hour} * * *"


def schedule_id_for(trigger_id: str) -> str:
    return f"trigger-{trigger_id}"


class ScheduleClient:
    """Registers and removes cron schedules that call back into the API."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://qstash.upstash.io",
        callback_token: str = "",
        timeout: int = 15,
    ):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.callback_token = callback_token
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}

    def upsert_schedule(self, schedule_id: str, cron: str, destination: str, body: dict) -> str:
        """Create or replace the schedule *schedule_id*. Returns the id."""
        if not self.configured:
            raise UpstreamServiceError("Scheduler is not configured")

        headers = self._headers()
        headers["Upstash-Cron"] = cron
        headers["Upstash-Schedule-Id"] = schedule_id
        headers["Upstash-Method"] = "POST"
        if self.callback_token:
            headers["Upstash-Forward-Authorization"] = f"Bearer {self.callback_token}"

        try:
            response = requests.post(
                f"{self.api_url}/v2/schedules/{destination}",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.error("Schedule registration failed: %s", type(exc).__name__)
            raise UpstreamServiceError("Failed to register schedule") from exc

        if not response.ok:
            logger.error(
                "Scheduler rejected schedule",
                extra={"schedule_id": schedule_id, "status_code": response.status_code},
            )
            raise UpstreamServiceError(f"Scheduler returned {response.status_code}")

        returned: Optional[str] = None
        try:
            returned = (response.json() or {}).get("scheduleId")
        except ValueError:
            pass
        return returned or schedule_id

    def delete_schedule(self, schedule_id: str) -> None:
        """Remove a schedule. Already-absent schedules count as removed."""
        if not self.configured:
            logger.warning("Scheduler not configured; cannot remove schedule %s", schedule_id)
            return

        try:
            response = requests.delete(
                f"{self.api_url}/v2/schedules/{schedule_id}",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.error("Schedule removal failed: %s", type(exc).__name__)
            raise UpstreamServiceError("Failed to remove schedule") from exc

        if response.status_code == 404:
            return
        if not response.ok:
            raise UpstreamServiceError(f"Scheduler returned {response.status_code}")

"""Tests for the outbound HTTP and LLM clients with the network patched out."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from shipnotes.exceptions import ProviderAuthError, ProviderRateLimitedError, UpstreamServiceError
from shipnotes.services.entitlements import AI_CREDITS, EntitlementClient, EntitlementLookupError
from shipnotes.services.github_client import GitHubAPIError, GitHubClient
from shipnotes.services.llm_client import LLMClient, LLMError
from shipnotes.services.scheduling import ScheduleClient
from shipnotes.services.scraper_client import ScrapeError, ScraperClient


def _response(status_code=200, body=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.headers = headers or {}
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


class TestGitHubClient:

    def test_sends_token_and_returns_json(self):
        client = GitHubClient("https://api.github.test")
        with patch.object(client._session, "get", return_value=_response(body={"login": "dana"})) as get:
            assert client.get_authenticated_user("ghp_x") == {"login": "dana"}

        url = get.call_args.args[0]
        headers = get.call_args.kwargs["headers"]
        assert url == "https://api.github.test/user"
        assert headers["Authorization"] == "Bearer ghp_x"

    def test_public_requests_have_no_authorization(self):
        client = GitHubClient()
        with patch.object(client._session, "get", return_value=_response(body={})) as get:
            client.get_repository("acme", "widgets")
        assert "Authorization" not in get.call_args.kwargs["headers"]

    def test_rate_limit(self):
        client = GitHubClient()
        limited = _response(403, {"message": "API rate limit exceeded"},
                            {"X-RateLimit-Remaining": "0", "Retry-After": "42"})
        with patch.object(client._session, "get", return_value=limited):
            with pytest.raises(ProviderRateLimitedError) as exc:
                client.list_commits("acme", "widgets")
        assert exc.value.details["retry_after"] == 42

    def test_unauthorized(self):
        client = GitHubClient()
        with patch.object(client._session, "get", return_value=_response(401, {"message": "Bad credentials"})):
            with pytest.raises(ProviderAuthError):
                client.get_authenticated_user("ghp_bad")

    def test_not_found_keeps_status(self):
        client = GitHubClient()
        with patch.object(client._session, "get", return_value=_response(404, {"message": "Not Found"})):
            with pytest.raises(GitHubAPIError) as exc:
                client.get_repository("acme", "secret")
        assert exc.value.upstream_status == 404
        assert exc.value.message == "GitHub API error: Not Found"

    def test_network_error(self):
        client = GitHubClient()
        with patch.object(client._session, "get", side_effect=requests.exceptions.ConnectionError()):
            with pytest.raises(GitHubAPIError):
                client.list_releases("acme", "widgets")


class TestScheduleClient:

    def test_unconfigured_upsert_raises(self):
        with pytest.raises(UpstreamServiceError, match="not configured"):
            ScheduleClient("").upsert_schedule("trigger-1", "0 9 * * 1", "https://x.test/cb", {})

    def test_upsert_sends_cron_headers(self):
        client = ScheduleClient("qstash-token", "https://qstash.test", callback_token="cb")
        with patch("shipnotes.services.scheduling.requests.post",
                   return_value=_response(body={"scheduleId": "trigger-1"})) as post:
            assert client.upsert_schedule("trigger-1", "0 9 * * 1", "https://api.test/cb", {"trigger_id": "1"}) == "trigger-1"

        headers = post.call_args.kwargs["headers"]
        assert post.call_args.args[0] == "https://qstash.test/v2/schedules/https://api.test/cb"
        assert headers["Upstash-Cron"] == "0 9 * * 1"
        assert headers["Upstash-Schedule-Id"] == "trigger-1"
        assert headers["Upstash-Forward-Authorization"] == "Bearer cb"

    def test_rejected_upsert(self):
        client = ScheduleClient("qstash-token")
        with patch("shipnotes.services.scheduling.requests.post", return_value=_response(400, {})):
            with pytest.raises(UpstreamServiceError):
                client.upsert_schedule("trigger-1", "0 9 * * 1", "https://api.test/cb", {})

    def test_delete_tolerates_missing_schedule(self):
        client = ScheduleClient("qstash-token")
        with patch("shipnotes.services.scheduling.requests.delete", return_value=_response(404)):
            client.delete_schedule("trigger-1")


class TestScraperClient:

    def test_invalid_url_is_not_retriable(self):
        with pytest.raises(ScrapeError) as exc:
            ScraperClient("key").scrape_markdown("acme dot com")
        assert exc.value.retriable is False

    def test_returns_markdown(self):
        body = {"success": True, "data": {"markdown": "# Acme"}}
        with patch("shipnotes.services.scraper_client.requests.post", return_value=_response(body=body)):
            assert ScraperClient("key").scrape_markdown("https://acme.test") == "# Acme"

    @pytest.mark.parametrize("status, retriable", [(502, True), (429, True), (403, False)])
    def test_failure_classification(self, status, retriable):
        with patch("shipnotes.services.scraper_client.requests.post",
                   return_value=_response(status, {"success": False, "error": "blocked"})):
            with pytest.raises(ScrapeError) as exc:
                ScraperClient("key").scrape_markdown("https://acme.test")
        assert exc.value.retriable is retriable

    def test_timeout_is_retriable(self):
        with patch("shipnotes.services.scraper_client.requests.post", side_effect=requests.exceptions.Timeout()):
            with pytest.raises(ScrapeError) as exc:
                ScraperClient("key").scrape_markdown("https://acme.test")
        assert exc.value.retriable is True


class TestLLMClient:

    def _completion(self, content):
        response = MagicMock()
        response.choices[0].message.content = content
        return response

    def test_unconfigured_is_not_retriable(self):
        with pytest.raises(LLMError) as exc:
            LLMClient("").complete_json("system", "prompt")
        assert exc.value.retriable is False

    def test_strips_code_fences(self):
        reply = '```json\n{"title": "Hi", "markdown": "## Fixes"}\n```'
        with patch("litellm.completion", return_value=self._completion(reply)) as completion:
            assert LLMClient("gpt-4o-mini").complete_json("system", "prompt") == {"title": "Hi", "markdown": "## Fixes"}
        assert completion.call_args.kwargs["response_format"] == {"type": "json_object"}

    def test_malformed_json(self):
        with patch("litellm.completion", return_value=self._completion("not json")):
            with pytest.raises(LLMError, match="malformed JSON"):
                LLMClient("gpt-4o-mini").complete_json("system", "prompt")

    def test_provider_failure(self):
        with patch("litellm.completion", side_effect=RuntimeError("503 from provider")):
            with pytest.raises(LLMError) as exc:
                LLMClient("gpt-4o-mini").complete("system", "prompt")
        assert exc.value.retriable is True


class TestEntitlementClient:

    def test_unconfigured_is_base_plan_with_credits(self):
        client = EntitlementClient("", "")
        assert client.is_allowed("org-1", "extended_log_retention") is False
        assert client.has_ai_credits("org-1") is True

    def test_allowed(self):
        client = EntitlementClient("key", "https://billing.test")
        with patch("shipnotes.services.entitlements.requests.post",
                   return_value=_response(body={"allowed": True})) as post:
            assert client.is_allowed("org-1", AI_CREDITS) is True
        assert post.call_args.kwargs["json"] == {"customer_id": "org-1", "feature_id": AI_CREDITS}

    def test_lookup_failure(self):
        client = EntitlementClient("key", "https://billing.test")
        with patch("shipnotes.services.entitlements.requests.post", side_effect=requests.exceptions.Timeout()):
            with pytest.raises(EntitlementLookupError):
                client.is_allowed("org-1", "extended_log_retention")
            assert client.has_ai_credits("org-1") is True

    @pytest.mark.parametrize("body", [["unexpected"], "allowed", None])
    def test_reply_that_is_not_an_object(self, body):
        client = EntitlementClient("key", "https://billing.test")
        with patch("shipnotes.services.entitlements.requests.post", return_value=_response(body=body)):
            with pytest.raises(EntitlementLookupError):
                client.is_allowed("org-1", "extended_log_retention")
            assert client.has_ai_credits("org-1") is True

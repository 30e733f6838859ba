"""Tests for the integration registry service."""

import pytest

from shipnotes.exceptions import (
    NotFoundError, ProviderAuthError, ProviderRateLimitedError, RepositoryAlreadyConnectedError,
)
from shipnotes.models.integration import Integration, Repository, RepositoryOutput
from shipnotes.schemas.integration import (
    IntegrationCreate, IntegrationUpdate, OutputCreate, OutputUpdate, RepositoryCreate,
)
from shipnotes.services.integration_service import PUBLIC_ACCESS_ERROR, IntegrationService

from conftest import make_organization


@pytest.fixture()
def org(db):
    return make_organization(db)


@pytest.fixture()
def service(db, services):
    return IntegrationService(db, services)


def _create(service, org, owner="acme", repo="widgets", token=None):
    return service.create_integration(
        org.id, "user-1", IntegrationCreate(display_name="Acme", owner=owner, repo=repo, token=token),
    )


def _outputs(db, repository_id) -> dict:
    rows = db.query(RepositoryOutput).filter(RepositoryOutput.repository_id == repository_id).all()
    return {row.output_type: row.enabled for row in rows}


class TestCreateIntegration:

    def test_public_repository(self, service, org, db):
        integration = _create(service, org)

        assert integration.encrypted_token is None
        assert integration.created_by_user_id == "user-1"
        [repository] = integration.repositories
        assert repository.full_name == "acme/widgets"
        assert repository.encrypted_webhook_secret
        assert _outputs(db, repository.id) == {"changelog": True, "blog_post": False, "twitter_post": False}

    def test_token_is_encrypted_at_rest(self, service, org, services):
        integration = _create(service, org, token="ghp_valid")
        assert integration.encrypted_token != "ghp_valid"
        assert services.vault.decrypt(integration.encrypted_token) == "ghp_valid"

    def test_invalid_token(self, service, org, db):
        with pytest.raises(ProviderAuthError, match="Invalid GitHub token"):
            _create(service, org, token="ghp_nope")
        assert db.query(Integration).count() == 0

    def test_private_repository_without_token(self, service, org, db):
        with pytest.raises(ProviderAuthError) as exc:
            _create(service, org, repo="secret-sauce")
        assert exc.value.message == PUBLIC_ACCESS_ERROR
        assert db.query(Repository).count() == 0

    def test_duplicate_is_case_insensitive_and_leaves_one_row(self, service, org, db):
        _create(service, org)
        with pytest.raises(RepositoryAlreadyConnectedError, match="Repository already connected"):
            _create(service, org, owner="ACME", repo="Widgets")

        assert db.query(Repository).count() == 1
        assert db.query(Integration).count() == 1

    def test_same_repository_in_another_organization(self, service, org, db):
        other = make_organization(db, slug="other", owner_id="user-2")
        _create(service, org)
        _create(service, other)
        assert db.query(Repository).count() == 2


class TestUpdateAndDelete:

    def test_update_sets_fields(self, service, org):
        integration = _create(service, org)

        updated = service.update_integration(
            org.id, integration.id, IntegrationUpdate(display_name="Renamed", enabled=False),
        )
        assert updated.display_name == "Renamed"
        assert updated.enabled is False
        assert updated.updated_at is not None

    def test_delete_removes_children(self, service, org, db):
        integration = _create(service, org)
        service.delete_integration(org.id, integration.id)

        assert db.query(Integration).count() == 0
        assert db.query(Repository).count() == 0
        assert db.query(RepositoryOutput).count() == 0

    def test_other_organization_sees_404(self, service, org, db):
        integration = _create(service, org)
        other = make_organization(db, slug="other", owner_id="user-2")
        with pytest.raises(NotFoundError):
            service.get_integration(other.id, integration.id)
        with pytest.raises(NotFoundError):
            service.delete_integration(other.id, integration.id)
        assert db.query(Integration).count() == 1


class TestRepositories:

    def test_add_repository_defaults_to_all_outputs(self, service, org, db):
        integration = _create(service, org)
        repository = service.add_repository(org.id, integration.id, RepositoryCreate(owner="acme", repo="gadgets"))

        assert _outputs(db, repository.id) == {
            "changelog": True,
            "blog_post": False,
            "twitter_post": False,
            "linkedin_post": False,
            "investor_update": False,
        }

    def test_add_repository_with_requested_outputs(self, service, org, db):
        integration = _create(service, org)
        repository = service.add_repository(org.id, integration.id, RepositoryCreate(
            owner="acme", repo="gadgets",
            outputs=[OutputCreate(output_type="blog_post", enabled=True, config={"publish_destination": "webflow"})],
        ))

        outputs = _outputs(db, repository.id)
        assert outputs["blog_post"] is True
        assert outputs["changelog"] is True
        blog = db.query(RepositoryOutput).filter_by(repository_id=repository.id, output_type="blog_post").one()
        assert blog.config == {"publish_destination": "webflow"}

    def test_duplicate_add_leaves_one_row(self, service, org, db):
        integration = _create(service, org)
        with pytest.raises(RepositoryAlreadyConnectedError):
            service.add_repository(org.id, integration.id, RepositoryCreate(owner="acme", repo="widgets"))
        assert db.query(Repository).filter_by(integration_id=integration.id).count() == 1

    def test_toggle_and_delete_repository(self, service, org, db):
        integration = _create(service, org)
        repository = integration.repositories[0]

        assert service.update_repository(org.id, repository.id, False).enabled is False
        service.delete_repository(org.id, repository.id)
        assert db.query(Repository).count() == 0
        assert db.query(RepositoryOutput).count() == 0


class TestOutputs:

    def test_configure_output_upserts(self, service, org, db):
        repository = _create(service, org).repositories[0]

        first = service.configure_output(org.id, repository.id, OutputCreate(output_type="linkedin_post"))
        second = service.configure_output(
            org.id, repository.id, OutputCreate(output_type="linkedin_post", enabled=False),
        )
        assert first.id == second.id
        assert second.enabled is False

    def test_update_output(self, service, org, db):
        repository = _create(service, org).repositories[0]
        output = db.query(RepositoryOutput).filter_by(repository_id=repository.id, output_type="blog_post").one()

        updated = service.update_output(org.id, output.id, OutputUpdate(enabled=True))
        assert updated.enabled is True

    def test_update_output_of_other_organization(self, service, org, db):
        repository = _create(service, org).repositories[0]
        output = db.query(RepositoryOutput).filter_by(repository_id=repository.id).first()
        other = make_organization(db, slug="other", owner_id="user-2")
        with pytest.raises(NotFoundError):
            service.update_output(other.id, output.id, OutputUpdate(enabled=False))


class TestProviderFacing:

    def test_available_repositories_need_a_token(self, service, org):
        integration = _create(service, org)
        assert service.list_available_repositories(org.id, integration.id) == []

    def test_available_repositories(self, service, org, services):
        services.github.user_repos = [{
            "owner": {"login": "acme"},
            "name": "widgets",
            "full_name": "acme/widgets",
            "private": True,
            "description": "Widgets",
            "html_url": "https://github.com/acme/widgets",
        }]
        integration = _create(service, org, token="ghp_valid")

        [repo] = service.list_available_repositories(org.id, integration.id)
        assert repo.full_name == "acme/widgets"
        assert repo.private is True
        assert repo.url == "https://github.com/acme/widgets"
        assert ("list_user_repositories", "ghp_valid") in services.github.calls

    def test_available_repositories_rate_limited(self, service, org, services):
        integration = _create(service, org, token="ghp_valid")
        services.github.errors["list_user_repositories"] = ProviderRateLimitedError("GitHub", retry_after=30)
        with pytest.raises(ProviderRateLimitedError):
            service.list_available_repositories(org.id, integration.id)

    def test_webhook_config(self, service, org, services):
        integration = _create(service, org)
        repository = integration.repositories[0]

        config = service.get_webhook_config(org.id, repository.id)
        assert config.webhook_url == (
            f"https://api.shipnotes.test/api/webhooks/github/{org.id}/{integration.id}/{repository.id}"
        )
        assert config.webhook_secret == services.vault.decrypt(repository.encrypted_webhook_secret)
        assert (config.owner, config.repo) == ("acme", "widgets")

    def test_missing_secret_is_generated(self, service, org, db):
        repository = _create(service, org).repositories[0]
        repository.encrypted_webhook_secret = None
        db.commit()

        config = service.get_webhook_config(org.id, repository.id)
        assert len(config.webhook_secret) == 64
        db.refresh(repository)
        assert repository.encrypted_webhook_secret is not None

    def test_rotate_secret(self, service, org):
        repository = _create(service, org).repositories[0]
        before = service.get_webhook_config(org.id, repository.id).webhook_secret
        after = service.rotate_webhook_secret(org.id, repository.id).webhook_secret
        assert before != after
        assert service.get_webhook_config(org.id, repository.id).webhook_secret == after

"""Integration registry: connected accounts, tracked repositories and their outputs.

Every operation is scoped to one organization. A row owned by another
organization is reported as missing (404), never as forbidden.

Children are written and removed explicitly, parents after children on
delete and before them on insert, inside a single transaction.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.context import ServiceContext
from ..core.vault import generate_webhook_secret
from ..exceptions import ProviderAuthError, RepositoryAlreadyConnectedError
from ..models.enums import OutputType, Provider
from ..models.integration import Integration, Repository, RepositoryOutput
from ..repositories.integration_repository import (
    IntegrationRepository, OutputRepository, RepositoryRepository,
)
from ..schemas.integration import (
    AvailableRepository, IntegrationCreate, IntegrationUpdate, OutputCreate,
    OutputSettings, OutputUpdate, RepositoryCreate, WebhookConfig,
)
from .github_client import GitHubAPIError

logger = logging.getLogger(__name__)

# Outputs created with a brand-new integration's first repository.
INTEGRATION_DEFAULT_OUTPUTS = {
    OutputType.CHANGELOG: True,
    OutputType.BLOG_POST: False,
    OutputType.TWITTER_POST: False,
}

# Outputs created for repositories added to an existing integration.
REPOSITORY_DEFAULT_OUTPUTS = {output_type: output_type == OutputType.CHANGELOG for output_type in OutputType}

PUBLIC_ACCESS_ERROR = (
    "Unable to access repository. It may be private and require a Personal Access Token."
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _config_dict(config: Optional[OutputSettings]) -> Optional[dict]:
    if config is None:
        return None
    return config.model_dump(mode="json", exclude_none=True)


class IntegrationService:
    """Integration, repository and output operations.

    Public methods:
        create_integration          -- validate access, then integration + repository + outputs
        update_integration          -- display name / enabled
        delete_integration          -- outputs, repositories, integration
        list_integrations           -- with repositories and outputs attached
        add_repository / update_repository / delete_repository
        configure_output            -- upsert on (repository, output type)
        update_output
        list_available_repositories -- what the stored token can see on GitHub
        get_webhook_config          -- callback URL and secret for the provider
        rotate_webhook_secret
    """

    def __init__(self, db: Session, services: ServiceContext):
        self.db = db
        self.services = services
        self.integrations = IntegrationRepository(db)
        self.repositories = RepositoryRepository(db)
        self.outputs = OutputRepository(db)

    # ------------------------------------------------------------------
    # Integrations
    # ------------------------------------------------------------------

    def create_integration(
        self, organization_id: str, creator_user_id: Optional[str], data: IntegrationCreate
    ) -> Integration:
        """Connect a GitHub repository.

        Raises:
            RepositoryAlreadyConnectedError: owner/repo is already tracked by
                any integration of the organization (case-insensitive).
            ProviderAuthError: the token is invalid, or without a token the
                repository is not publicly readable.
        """
        if self.repositories.find_in_organization(organization_id, data.owner, data.repo):
            raise RepositoryAlreadyConnectedError(data.owner, data.repo)

        token = (data.token or "").strip() or None
        self._verify_access(data.owner, data.repo, token)

        integration = Integration(
            id=_new_id(),
            organization_id=organization_id,
            provider=Provider.GITHUB.value,
            created_by_user_id=creator_user_id,
            display_name=data.display_name.strip(),
            encrypted_token=self.services.vault.encrypt(token) if token else None,
            enabled=True,
        )
        try:
            self.db.add(integration)
            self.db.flush()
            repository = self._insert_repository(integration.id, data.owner, data.repo)
            self._insert_outputs(repository.id, INTEGRATION_DEFAULT_OUTPUTS)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise RepositoryAlreadyConnectedError(data.owner, data.repo) from e

        self.db.refresh(integration)
        logger.info(
            "Integration created",
            extra={
                "organization_id": organization_id,
                "integration_id": integration.id,
                "repository": f"{data.owner}/{data.repo}",
                "has_token": token is not None,
            },
        )
        return integration

    def _verify_access(self, owner: str, repo: str, token: Optional[str]) -> None:
        github = self.services.github
        if token:
            try:
                github.get_authenticated_user(token)
            except ProviderAuthError as e:
                raise ProviderAuthError("Invalid GitHub token") from e
            return

        try:
            github.get_repository(owner, repo)
        except (ProviderAuthError, GitHubAPIError) as e:
            raise ProviderAuthError(PUBLIC_ACCESS_ERROR) from e

    def get_integration(self, organization_id: str, integration_id: str) -> Integration:
        return self.integrations.get_for_organization(integration_id, organization_id)

    def update_integration(
        self, organization_id: str, integration_id: str, data: IntegrationUpdate
    ) -> Integration:
        integration = self.get_integration(organization_id, integration_id)
        if data.display_name is not None:
            integration.display_name = data.display_name.strip()
        if data.enabled is not None:
            integration.enabled = data.enabled
        integration.updated_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(integration)
        return integration

    def delete_integration(self, organization_id: str, integration_id: str) -> None:
        integration = self.get_integration(organization_id, integration_id)
        repo_ids = [
            row.id for row in
            self.db.query(Repository.id).filter(Repository.integration_id == integration.id).all()
        ]
        try:
            if repo_ids:
                self.db.query(RepositoryOutput).filter(
                    RepositoryOutput.repository_id.in_(repo_ids)
                ).delete(synchronize_session=False)
            self.db.query(Repository).filter(
                Repository.integration_id == integration.id
            ).delete(synchronize_session=False)
            self.db.query(Integration).filter(
                Integration.id == integration.id
            ).delete(synchronize_session=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            "Integration deleted",
            extra={"organization_id": organization_id, "integration_id": integration_id,
                   "repositories": len(repo_ids)},
        )

    def list_integrations(self, organization_id: str) -> List[Integration]:
        return self.integrations.list_for_organization(organization_id)

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def add_repository(
        self, organization_id: str, integration_id: str, data: RepositoryCreate
    ) -> Repository:
        """Track another repository under an existing integration.

        Without explicit outputs every content type is created, with only
        the changelog enabled.
        """
        integration = self.get_integration(organization_id, integration_id)
        if self.repositories.find_in_integration(integration.id, data.owner, data.repo):
            raise RepositoryAlreadyConnectedError(data.owner, data.repo)

        outputs = {output_type: enabled for output_type, enabled in REPOSITORY_DEFAULT_OUTPUTS.items()}
        configs: dict = {}
        for requested in data.outputs or []:
            outputs[requested.output_type] = requested.enabled
            configs[requested.output_type] = _config_dict(requested.config)

        try:
            repository = self._insert_repository(integration.id, data.owner, data.repo)
            self._insert_outputs(repository.id, outputs, configs)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise RepositoryAlreadyConnectedError(data.owner, data.repo) from e

        self.db.refresh(repository)
        logger.info(
            "Repository added",
            extra={"organization_id": organization_id, "integration_id": integration.id,
                   "repository_id": repository.id},
        )
        return repository

    def get_repository(self, organization_id: str, repository_id: str) -> Repository:
        return self.repositories.get_for_organization(repository_id, organization_id)

    def update_repository(self, organization_id: str, repository_id: str, enabled: bool) -> Repository:
        repository = self.get_repository(organization_id, repository_id)
        repository.enabled = enabled
        self.db.commit()
        self.db.refresh(repository)
        return repository

    def delete_repository(self, organization_id: str, repository_id: str) -> None:
        repository = self.get_repository(organization_id, repository_id)
        try:
            self.db.query(RepositoryOutput).filter(
                RepositoryOutput.repository_id == repository.id
            ).delete(synchronize_session=False)
            self.db.query(Repository).filter(
                Repository.id == repository.id
            ).delete(synchronize_session=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            "Repository deleted",
            extra={"organization_id": organization_id, "repository_id": repository_id},
        )

    def _insert_repository(self, integration_id: str, owner: str, repo: str) -> Repository:
        repository = Repository(
            id=_new_id(),
            integration_id=integration_id,
            owner=owner,
            repo=repo,
            enabled=True,
            encrypted_webhook_secret=self.services.vault.encrypt(generate_webhook_secret()),
        )
        self.db.add(repository)
        self.db.flush()
        return repository

    def _insert_outputs(self, repository_id: str, outputs: dict, configs: Optional[dict] = None) -> None:
        configs = configs or {}
        for output_type, enabled in outputs.items():
            self.db.add(RepositoryOutput(
                id=_new_id(),
                repository_id=repository_id,
                output_type=output_type.value,
                enabled=enabled,
                config=configs.get(output_type),
            ))
        self.db.flush()

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def configure_output(
        self, organization_id: str, repository_id: str, data: OutputCreate
    ) -> RepositoryOutput:
        """Create or replace the output of one content type for a repository."""
        repository = self.get_repository(organization_id, repository_id)
        output = self.outputs.find(repository.id, data.output_type.value)
        if output is None:
            output = RepositoryOutput(
                id=_new_id(),
                repository_id=repository.id,
                output_type=data.output_type.value,
            )
            self.db.add(output)
        output.enabled = data.enabled
        output.config = _config_dict(data.config)
        self.db.commit()
        self.db.refresh(output)
        return output

    def update_output(self, organization_id: str, output_id: str, data: OutputUpdate) -> RepositoryOutput:
        output = self.outputs.get_for_organization(output_id, organization_id)
        if data.enabled is not None:
            output.enabled = data.enabled
        if data.config is not None:
            output.config = _config_dict(data.config)
        self.db.commit()
        self.db.refresh(output)
        return output

    # ------------------------------------------------------------------
    # Provider-facing
    # ------------------------------------------------------------------

    def list_available_repositories(self, organization_id: str, integration_id: str) -> List[AvailableRepository]:
        """Repositories visible to the integration's token. Empty without a token."""
        integration = self.get_integration(organization_id, integration_id)
        token = self.services.vault.decrypt_optional(integration.encrypted_token)
        if not token:
            return []

        items = self.services.github.list_user_repositories(token)
        return [
            AvailableRepository(
                owner=(item.get("owner") or {}).get("login", ""),
                name=item.get("name", ""),
                full_name=item.get("full_name", ""),
                private=bool(item.get("private", False)),
                description=item.get("description"),
                url=item.get("html_url", ""),
            )
            for item in items
        ]

    def webhook_url(self, integration: Integration, repository: Repository) -> str:
        base = self.services.settings.get_public_base_url()
        return (
            f"{base}/api/webhooks/{integration.provider}/"
            f"{integration.organization_id}/{integration.id}/{repository.id}"
        )

    def get_webhook_config(self, organization_id: str, repository_id: str) -> WebhookConfig:
        """Callback URL and shared secret. Generates a secret if none is stored."""
        repository = self.get_repository(organization_id, repository_id)
        secret = self.services.vault.decrypt_optional(repository.encrypted_webhook_secret)
        if not secret:
            secret = self._store_new_secret(repository)
        return self._webhook_config(repository, secret)

    def rotate_webhook_secret(self, organization_id: str, repository_id: str) -> WebhookConfig:
        repository = self.get_repository(organization_id, repository_id)
        secret = self._store_new_secret(repository)
        logger.info(
            "Webhook secret rotated",
            extra={"organization_id": organization_id, "repository_id": repository_id},
        )
        return self._webhook_config(repository, secret)

    def _store_new_secret(self, repository: Repository) -> str:
        secret = generate_webhook_secret()
        repository.encrypted_webhook_secret = self.services.vault.encrypt(secret)
        self.db.commit()
        self.db.refresh(repository)
        return secret

    def _webhook_config(self, repository: Repository, secret: str) -> WebhookConfig:
        integration = self.integrations.get_by_id(repository.integration_id)
        return WebhookConfig(
            webhook_url=self.webhook_url(integration, repository),
            webhook_secret=secret,
            repository_id=repository.id,
            owner=repository.owner,
            repo=repository.repo,
        )

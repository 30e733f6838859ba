"""API tests for organizations, posts and webhook log listing."""

from shipnotes.exceptions import UpstreamServiceError
from shipnotes.models.content import BrandSettings, Post
from shipnotes.models.enums import IntegrationType
from shipnotes.models.integration import Integration, Repository, RepositoryOutput
from shipnotes.models.organization import Member, Organization
from shipnotes.models.trigger import ContentTrigger
from shipnotes.models.workflow import WorkflowRun, WorkflowStep
from shipnotes.services.workflow_engine import WorkflowEngine
from shipnotes.services.workflows import start_content_generation

from conftest import make_organization, make_repository, make_trigger


class TestOrganizations:

    def test_create_and_get(self, client):
        resp = client.post("/api/organizations", json={"name": "Acme", "slug": "acme"})
        assert resp.status_code == 201
        org = resp.json()
        assert client.get(f"/api/organizations/{org['id']}").json()["slug"] == "acme"

    def test_slug_taken(self, client):
        client.post("/api/organizations", json={"name": "Acme", "slug": "acme"})
        resp = client.post("/api/organizations", json={"name": "Acme 2", "slug": "acme"})
        assert resp.status_code == 409
        assert resp.json()["code"] == "SLUG_TAKEN"

    def test_missing_organization(self, client):
        assert client.get("/api/organizations/nope").status_code == 404


class TestDeleteOrganization:

    def _populate(self, db, services, org):
        repository = make_repository(db, services, org)
        trigger = make_trigger(db, org, [repository.id])
        trigger.schedule_id = f"trigger-{trigger.id}"
        services.scheduler.schedules[trigger.schedule_id] = {}
        db.add(BrandSettings(id="brand-1", organization_id=org.id, company_name="Acme"))
        db.commit()
        engine = WorkflowEngine(db, services)
        run = start_content_generation(engine, trigger, IntegrationType.MANUAL, integration_id=trigger.id)
        engine.execute(run.id)
        return trigger

    def test_cascade(self, client, db, services):
        org = make_organization(db)
        other = make_organization(db, slug="other", owner_id="user-2")
        make_repository(db, services, other)
        trigger = self._populate(db, services, org)

        assert client.delete(f"/api/organizations/{org.id}").status_code == 204

        assert services.scheduler.deleted == [f"trigger-{trigger.id}"]
        assert db.get(Organization, org.id) is None
        for model in (ContentTrigger, Post, BrandSettings, WorkflowRun, WorkflowStep):
            assert db.query(model).count() == 0
        assert db.query(Member).filter_by(organization_id=org.id).count() == 0
        # The other tenant is untouched
        assert db.query(Integration).count() == 1
        assert db.query(Repository).count() == 1
        assert db.query(RepositoryOutput).count() == 1

    def test_schedule_failure_does_not_block_delete(self, client, db, services):
        org = make_organization(db)
        self._populate(db, services, org)
        services.scheduler.fail_with = UpstreamServiceError("Scheduler returned 500")

        assert client.delete(f"/api/organizations/{org.id}").status_code == 204
        assert db.get(Organization, org.id) is None


class TestPostsAndLogs:

    def test_posts_listing(self, client, db, services):
        org = make_organization(db)
        repository = make_repository(db, services, org)
        trigger = make_trigger(db, org, [repository.id])
        engine = WorkflowEngine(db, services)
        engine.execute(start_content_generation(engine, trigger, IntegrationType.MANUAL).id)

        [post] = client.get(f"/api/organizations/{org.id}/posts").json()
        assert post["title"] == "What's new in Acme"
        assert post["content_type"] == "changelog"

    def test_webhook_logs_endpoint(self, client, db, services):
        org = make_organization(db)
        repository = make_repository(db, services, org)
        trigger = make_trigger(db, org, [repository.id])

        client.post(f"/api/organizations/{org.id}/triggers/{trigger.id}/run")

        page = client.get(f"/api/organizations/{org.id}/webhook-logs", params={"integration_type": "manual"}).json()
        assert page["total"] == 1
        assert page["page_size"] == 10
        assert page["logs"][0]["integration_type"] == "manual"

        assert client.get(
            f"/api/organizations/{org.id}/webhook-logs", params={"page_size": 101},
        ).status_code == 400

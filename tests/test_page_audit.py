"""Tests for project and page operations."""

import datetime

import pytest

from content_audit.database.models import Alert, utcnow
from content_audit.errors import NotFoundError, PreconditionFailedError, ValidationError
from content_audit.modules.guideline_synthesizer import GuidelineSynthesizer
from content_audit.modules.page_audit import PageAuditService
from content_audit.scheduler.jobs import EvaluateProjectChangesJob, ImportPagesJob, ScorePageJob


@pytest.fixture
def service(queue, analyzer, fetcher, ranking):
    return PageAuditService(queue, synthesizer=GuidelineSynthesizer(analyzer, fetcher, ranking))


class TestProjects:

    def test_create_normalizes_domain(self, service):
        project = service.create_project("user-1", "https://Example.com/", excluded_paths=["/blog"])

        assert project["site_domain"] == "example.com"
        assert project["excluded_paths"] == ["/blog"]
        assert project["max_pages"] == 100
        assert service.list_projects("user-1") == [project]
        assert service.list_projects("user-2") == []

    def test_duplicate_domain_is_rejected(self, service):
        service.create_project("user-1", "example.com")

        with pytest.raises(PreconditionFailedError):
            service.create_project("user-2", "EXAMPLE.com")

    @pytest.mark.parametrize("domain,max_pages", [("", 10), ("   ", 10), ("example.com", 0)])
    def test_invalid_input(self, service, domain, max_pages):
        with pytest.raises(ValidationError):
            service.create_project("user-1", domain, max_pages=max_pages)


class TestListPages:
    """Filtering, ordering and pagination."""

    @pytest.fixture
    def project_id(self, make_project, make_page):
        project_id = make_project()
        make_page(project_id, url="https://example.com/a", title="Apostille fees",
                  content_score=90, recommendation="Performing Well", recommendation_score=10,
                  avg_position=2.0)
        make_page(project_id, url="https://example.com/b", title="Notary",
                  content_score=30, recommendation="Needs Optimization", recommendation_score=70,
                  avg_position=8.5)
        make_page(project_id, url="https://example.com/c", title="Wedding notary",
                  content_score=60, recommendation="Monitor", recommendation_score=40,
                  avg_position=15.0)
        make_page(project_id, url="https://example.com/d", title="Unscored")
        return project_id

    def test_worst_pages_first_and_unscored_last(self, service, project_id):
        result = service.list_pages("user-1", project_id)

        assert [p["url"][-1] for p in result["items"]] == ["b", "c", "a", "d"]
        assert result["total"] == 4

    def test_filters(self, service, project_id):
        def urls(**filters):
            return [p["url"][-1] for p in service.list_pages("user-1", project_id, **filters)["items"]]

        assert urls(search="notary") == ["b", "c"]
        assert urls(min_score=50) == ["c", "a"]
        assert urls(max_score=60) == ["b", "c"]
        assert urls(min_position=5, max_position=10) == ["b"]
        assert urls(recommendation="Monitor") == ["c"]

    def test_pagination(self, service, project_id):
        result = service.list_pages("user-1", project_id, page=2, page_size=3)

        assert [p["url"][-1] for p in result["items"]] == ["d"]
        assert (result["total"], result["page"], result["page_size"]) == (4, 2, 3)

    def test_page_size_is_clamped(self, service, project_id):
        assert service.list_pages("user-1", project_id, page_size=500)["page_size"] == 100
        assert service.list_pages("user-1", project_id, page=0)["page"] == 1

    def test_other_owner_sees_not_found(self, service, project_id):
        with pytest.raises(NotFoundError):
            service.list_pages("user-2", project_id)


class TestPageOperations:

    def test_get_page_includes_guidelines(self, service, make_project, make_page, make_guidelines):
        page_id = make_page(make_project(), content="Cached text")
        make_guidelines(page_id)

        page = service.get_page("user-1", page_id)

        assert page["content"] == "Cached text"
        assert page["guidelines"]["keyword"] == "apostille services"
        assert page["guidelines"]["competitor_count"] == 3

    def test_update_page_content(self, service, make_project, make_page):
        page_id = make_page(make_project(), title="Old title")

        page = service.update_page_content(
            "user-1", page_id, content="New body", main_keyword="  mobile notary "
        )

        assert page["content"] == "New body"
        assert page["main_keyword"] == "mobile notary"
        assert page["title"] == "Old title"
        assert page["guidelines"] is None

    def test_refresh_queues_scoring(self, service, queue, make_project, make_page):
        page_id = make_page(make_project())

        assert service.refresh_page_analysis("user-1", page_id)["status"] == "queued"
        assert queue.pending() == [ScorePageJob(page_id=page_id, follow_up_alerts=True)]

    def test_refresh_checks_ownership(self, service, queue, make_project, make_page):
        page_id = make_page(make_project())

        with pytest.raises(NotFoundError):
            service.refresh_page_analysis("user-2", page_id)
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_run_keyword_analysis(self, service, queue, make_project, make_page):
        page_id = make_page(make_project(), main_keyword="apostille services")

        result = await service.run_keyword_analysis("user-1", page_id)

        assert result["keyword"] == "apostille services"
        assert result["competitor_count"] == 2
        assert queue.pending() == [ScorePageJob(page_id=page_id)]

    @pytest.mark.asyncio
    async def test_run_keyword_analysis_needs_a_keyword(self, service, make_project, make_page):
        page_id = make_page(make_project())

        with pytest.raises(ValidationError):
            await service.run_keyword_analysis("user-1", page_id)

    def test_list_alerts(self, service, make_project, make_page, db_session):
        project_id = make_project()
        page_id = make_page(project_id)
        db_session.add_all([
            Alert(page_id=page_id, alert_type="drop", severity="warning", title="open"),
            Alert(page_id=page_id, alert_type="rise", severity="info", title="done", is_resolved=True),
        ])
        db_session.commit()

        assert [a["title"] for a in service.list_alerts("user-1", project_id)] == ["open"]
        assert len(service.list_alerts("user-1", project_id, unresolved_only=False)) == 2


class TestFanOut:
    """Periodic queueing."""

    def test_queue_stale_pages_oldest_first(self, service, queue, make_project, make_page):
        project_id = make_project()
        now = utcnow()
        fresh = make_page(project_id, url="https://example.com/fresh", last_analysed_at=now)
        old = make_page(
            project_id, url="https://example.com/old", last_analysed_at=now - datetime.timedelta(days=30)
        )
        older = make_page(
            project_id, url="https://example.com/older", last_analysed_at=now - datetime.timedelta(days=60)
        )
        never = make_page(project_id, url="https://example.com/never")

        assert service.queue_stale_pages(days=7, limit=100) == 3
        assert [job.page_id for job in queue.pending()] == [never, older, old]
        assert fresh not in [job.page_id for job in queue.pending()]

    def test_queue_stale_pages_limit(self, service, queue, make_project, make_page):
        project_id = make_project()
        for i in range(3):
            make_page(project_id, url=f"https://example.com/{i}")

        assert service.queue_stale_pages(days=7, limit=2) == 2

    def test_project_fan_out(self, service, queue, make_project):
        first = make_project()
        second = make_project(owner_id="user-2", site_domain="other.com")

        assert service.queue_metrics_import() == 2
        assert service.queue_alert_evaluation() == 2
        assert queue.pending() == [
            ImportPagesJob(project_id=first, user_id="user-1"),
            ImportPagesJob(project_id=second, user_id="user-2"),
            EvaluateProjectChangesJob(project_id=first),
            EvaluateProjectChangesJob(project_id=second),
        ]

"""
Shared fixtures: a throwaway SQLite database, fake capability providers
and an in-memory job queue.
"""

import os
import sys
import tempfile

# Point settings at a scratch directory before any content_audit import
_TMP_DIR = tempfile.mkdtemp(prefix="content_audit_tests_")
os.environ["CONTENT_AUDIT_DATA_DIR"] = _TMP_DIR
os.environ["CONTENT_AUDIT_LOGS_DIR"] = _TMP_DIR
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
for _key in ("SERPER_API_KEY", "OPENAI_API_KEY", "GSC_ACCESS_TOKEN"):
    os.environ[_key] = ""

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from content_audit.database.models import (
    AuditPage, AuditProject, Base, ContentGuidelines, SessionLocal, engine,
)
from content_audit.modules.guideline_synthesizer import ImportantTerm
from content_audit.modules.text_analyzer import TextAnalyzer
from content_audit.scheduler.orchestrator import Orchestrator
from content_audit.scheduler.queue import InMemoryJobQueue
from tests.fakes import (
    FakeFetcher, FakeGenerator, FakeMetrics, FakeRanking, competitor_page, draft,
)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create test database tables."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    session = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
    finally:
        session.close()


@pytest.fixture
def db_session():
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def reload():
    """Read one row in a fresh session; scalar attributes stay usable after close."""
    def _reload(model, ident):
        session = SessionLocal()
        try:
            return session.get(model, ident)
        finally:
            session.close()
    return _reload


@pytest.fixture
def make_project(db_session):
    def _make(owner_id="user-1", site_domain="example.com", **fields):
        project = AuditProject(owner_id=owner_id, site_domain=site_domain, **fields)
        db_session.add(project)
        db_session.commit()
        return project.id
    return _make


@pytest.fixture
def make_page(db_session):
    def _make(project_id, url="https://example.com/apostille", **fields):
        page = AuditPage(project_id=project_id, url=url, **fields)
        db_session.add(page)
        db_session.commit()
        return page.id
    return _make


@pytest.fixture
def make_guidelines(db_session):
    def _make(page_id, keyword="apostille services", terms=None, **fields):
        values = {"min_words": 10, "max_words": 1000, "avg_words": 500, "competitor_count": 3}
        values.update(fields)
        guidelines = ContentGuidelines(
            page_id=page_id,
            keyword=keyword,
            important_terms=[
                t.to_dict() if isinstance(t, ImportantTerm) else t for t in (terms or [])
            ],
            **values,
        )
        db_session.add(guidelines)
        db_session.commit()
        return guidelines.id
    return _make


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

@pytest.fixture
def analyzer():
    return TextAnalyzer()


@pytest.fixture
def queue():
    return InMemoryJobQueue()


@pytest.fixture
def fetcher():
    return FakeFetcher({
        "https://rival-a.com/apostille": competitor_page(
            "https://rival-a.com/apostille",
            "Apostille services for documents. Our apostille team handles birth certificates "
            "and diplomas with fast apostille processing.",
        ),
        "https://rival-b.com/apostille": competitor_page(
            "https://rival-b.com/apostille",
            "Fast apostille services. Apostille processing for birth certificates and "
            "corporate documents in every state.",
        ),
    })


@pytest.fixture
def ranking():
    return FakeRanking(["https://rival-a.com/apostille", "https://rival-b.com/apostille"])


@pytest.fixture
def generator():
    return FakeGenerator([draft(), draft("Mention processing times.", "insert")])


@pytest.fixture
def metrics():
    return FakeMetrics()


@pytest.fixture
def orchestrator(analyzer, fetcher, ranking, generator, metrics, queue):
    return Orchestrator(
        analyzer=analyzer,
        fetcher=fetcher,
        ranking=ranking,
        generator=generator,
        metrics=metrics,
        queue=queue,
        session_factory=SessionLocal,
    )

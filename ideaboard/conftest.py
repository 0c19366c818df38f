# ideaboard/conftest.py
import sys
from pathlib import Path

import pytest

# Add repo root to PYTHONPATH so `ideaboard` imports without installation
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from ideaboard.core.config import Settings  # noqa: E402
from ideaboard.core.database import create_all_tables, make_engine  # noqa: E402
from ideaboard.core.metrics import METRICS  # noqa: E402
from ideaboard.features.gate.service import InMemoryFeatureFlagStore  # noqa: E402
from ideaboard.features.integrations.dispatcher import InlineDispatcher  # noqa: E402
from ideaboard.features.integrations.grader import IdeaGrader  # noqa: E402
from ideaboard.features.integrations.newsletter import NewsletterClient  # noqa: E402
from ideaboard.features.store.memory import InMemoryContentStore  # noqa: E402
from ideaboard.features.store.sql import SqlContentStore  # noqa: E402
from ideaboard.tests.mocks import TEST_ADMIN_KEY, TEST_JWT_SECRET, FakeClock  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        ENV="test",
        DATABASE_URL=None,
        JWT_SECRET=TEST_JWT_SECRET,
        ADMIN_KEY=TEST_ADMIN_KEY,
        TRUSTED_NETWORKS="10.99.0.0/16",
        GROQ_API_KEY=None,
        BEEHIIV_API_KEY=None,
        BEEHIIV_PUBLICATION_ID=None,
        BACKUP_CSV_PATH=None,
    )


@pytest.fixture
def memory_store():
    return InMemoryContentStore()


@pytest.fixture
def sqlite_store(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'ideaboard.db'}")
    create_all_tables(engine)
    yield SqlContentStore(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request):
    """Runs a test against both store implementations."""
    if request.param == "memory":
        return InMemoryContentStore()
    return request.getfixturevalue("sqlite_store")


@pytest.fixture
def flag_store():
    return InMemoryFeatureFlagStore(paywall_enabled=True)


@pytest.fixture
def dispatcher():
    return InlineDispatcher()


@pytest.fixture
def services(test_settings, memory_store, flag_store, clock, dispatcher):
    from ideaboard.main import build_services

    return build_services(
        test_settings,
        store=memory_store,
        flag_store=flag_store,
        clock=clock,
        dispatcher=dispatcher,
        grader=IdeaGrader(None),
        newsletter=NewsletterClient(None, None),
    )


@pytest.fixture
def app(test_settings, memory_store, flag_store, clock, dispatcher):
    from ideaboard.main import create_app

    return create_app(
        test_settings,
        store=memory_store,
        flag_store=flag_store,
        clock=clock,
        dispatcher=dispatcher,
        grader=IdeaGrader(None),
        newsletter=NewsletterClient(None, None),
    )


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": TEST_ADMIN_KEY}


@pytest.fixture
def services_from_app(app):
    """The service container behind `client`, for arranging state directly."""
    return app.state.services

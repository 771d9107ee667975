import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from piste.auth import CallerIdentity
from piste.database import get_session, import_models
from piste.main import app
from piste.models.competition import Competition
from piste.models.registration import Registration
from piste.models.tournament import Tournament

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. sqlite:///:memory: with StaticPool so ALL sessions share the same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. All models registered before create_all() (import_models)
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables dropped after every test so each test starts empty
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    import_models()
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Test client with the session dependency pointed at the test engine.

    The override is set BEFORE TestClient() so the app never touches its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Callers
# ============================================================================


def headers_for(user_id: str, role: str, organization_id: str = None) -> dict:
    headers = {"X-User-Id": user_id, "X-User-Role": role}
    if organization_id:
        headers["X-Organization-Id"] = organization_id
    return headers


@pytest.fixture
def admin_headers():
    return headers_for("u-admin", "ORGANIZATION_ADMIN", ORG_ID)


@pytest.fixture
def other_org_headers():
    return headers_for("u-other", "ORGANIZATION_ADMIN", OTHER_ORG_ID)


@pytest.fixture
def referee_headers():
    return headers_for("u-referee", "REFEREE", ORG_ID)


@pytest.fixture
def sysadmin_headers():
    return headers_for("u-root", "SYSTEM_ADMIN")


@pytest.fixture
def admin_caller():
    return CallerIdentity(user_id="u-admin", role="ORGANIZATION_ADMIN", organization_id=ORG_ID)


# ============================================================================
# Data
# ============================================================================


@pytest.fixture
def tournament(session: Session) -> Tournament:
    tournament = Tournament(name="Challenge International", organization_id=ORG_ID)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@pytest.fixture
def competition(session: Session, tournament: Tournament) -> Competition:
    competition = Competition(tournament_id=tournament.id, name="Senior Men Epee", weapon="EPEE", category="SENIOR")
    session.add(competition)
    session.commit()
    session.refresh(competition)
    return competition


def register(session: Session, competition_id: int, count: int, clubs=None, absent=(), countries=None):
    """Register athletes a1..aN seeded 1..N; clubs and countries cycle through the given lists."""
    registrations = []
    for i in range(1, count + 1):
        athlete_id = f"a{i}"
        registration = Registration(
            competition_id=competition_id,
            athlete_id=athlete_id,
            seed_rank=i,
            club=clubs[(i - 1) % len(clubs)] if clubs else None,
            country=countries[(i - 1) % len(countries)] if countries else None,
            is_present=athlete_id not in absent,
        )
        session.add(registration)
        registrations.append(registration)
    session.commit()
    return registrations

import copy

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from credit_manager.access_control.models import RoleEnum, User
from credit_manager.access_control.permissions import default_permissions
from credit_manager.access_control.security import create_access_token
from credit_manager.access_control.throttling import attempt_store, auth_attempt_store
from credit_manager.credit_applications import schemas as application_schemas
from credit_manager.credit_applications import services as application_services
from credit_manager.database import Base, create_all_tables, get_db
from credit_manager.main import app
from credit_manager.risk_assessment.scoring import DeterministicScoringEngine
from credit_manager.risk_assessment.services import risk_assessment_service

APPLICATION_PAYLOAD = {
    "applicant": {
        "first_name": "Jane",
        "last_name": "Doe",
        "date_of_birth": "1985-04-12",
        "ssn": "123-45-6789",
        "email": "jane.doe@example.com",
        "employment": {"employer": "Acme Corp", "employment_length": 6, "annual_income": 95000},
        "address": {"city": "Austin", "state": "TX", "time_at_address": 36},
    },
    "loan": {"amount": 25000, "purpose": "home_improvement", "term": 5,
             "collateral": {"type": "vehicle", "value": 15000}},
    "financial": {"credit_score": 720, "debt_to_income_ratio": 0.25, "payment_history_score": 92,
                  "credit_utilization": 0.2, "number_of_accounts": 6, "recent_inquiries": 1},
}


def application_payload(**sections):
    payload = copy.deepcopy(APPLICATION_PAYLOAD)
    for section, values in sections.items():
        payload[section].update(values)
    return payload


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_all_tables(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def scoring_engine():
    engine = risk_assessment_service.initialize(DeterministicScoringEngine())
    yield engine
    risk_assessment_service.dispose()


@pytest.fixture(autouse=True)
def clear_throttle():
    attempt_store.clear()
    auth_attempt_store.clear()
    yield
    attempt_store.clear()
    auth_attempt_store.clear()


@pytest.fixture
def make_user(db_session):
    def _make_user(username: str, role: RoleEnum, hashed_password: str = "not-a-real-hash", **kwargs) -> User:
        user = User(
            username=username,
            email=f"{username}@example.com",
            hashed_password=hashed_password,
            first_name=username.title(),
            role=role,
            **kwargs,
        )
        user.permissions = default_permissions(role)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user("alice_admin", RoleEnum.ADMIN)


@pytest.fixture
def underwriter(make_user):
    return make_user("uma_underwriter", RoleEnum.UNDERWRITER)


@pytest.fixture
def analyst(make_user):
    return make_user("andy_analyst", RoleEnum.ANALYST)


@pytest.fixture
def viewer(make_user):
    return make_user("vic_viewer", RoleEnum.VIEWER)


@pytest.fixture
def make_application(db_session, analyst):
    def _make_application(actor=None, **sections):
        application_in = application_schemas.ApplicationCreate.model_validate(application_payload(**sections))
        return application_services.create_application(db_session, application_in, actor or analyst)
    return _make_application


@pytest.fixture
def draft_application(make_application):
    return make_application()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": user.id, "username": user.username})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def payload_for():
    return application_payload

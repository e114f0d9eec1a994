import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Generator, Iterator, List, Optional

import pytest

os.environ.setdefault("DATABASE_ALLOW_NON_POSTGRES", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DATABASE_URL", os.getenv("DATABASE_URL", os.environ["TEST_DATABASE_URL"]))
os.environ.setdefault("LISTING_SWEEPER_ENABLED", "0")

from sqlalchemy import create_engine
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.engine import Engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import database as database_module
from database import IS_POSTGRES, Base

if not IS_POSTGRES:

    @compiles(UUID, "sqlite")  # type: ignore[misc]
    def _compile_uuid_sqlite(_element, _compiler, **_kw):  # pragma: no cover - sqlite compat
        return "TEXT"


import models  # noqa: E402,F401  registers table metadata
from core.listing_constants import ListingPlan  # noqa: E402
from core.listing_settings import ListingSettings  # noqa: E402
from models.listing import Listing  # noqa: E402
from services.listing_errors import TransientDependencyError  # noqa: E402
from services.listing_lifecycle import ListingLifecycleService, MediaUpload  # noqa: E402
from services.listing_repository import GeoPoint  # noqa: E402
from services.listing_states import ListingState  # noqa: E402

SKOPJE = GeoPoint(41.9981, 21.4254)
FIXED_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeGeocoder:
    def __init__(self, point: Optional[GeoPoint] = SKOPJE) -> None:
        self.point = point
        self.error: Optional[Exception] = None
        self.calls: List[Dict[str, str]] = []

    def geocode(self, *, address: str, city: str, country: str) -> Optional[GeoPoint]:
        self.calls.append({"address": address, "city": city, "country": country})
        if self.error is not None:
            raise self.error
        return self.point


class FakeMediaStore:
    def __init__(self) -> None:
        self.uploads: List[str] = []

    def upload(self, upload: MediaUpload, *, folder: str) -> str:
        url = f"https://media.test/{folder}/{upload.filename}"
        self.uploads.append(url)
        return url


class FakeCheckoutGateway:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.fail = False

    def create_checkout(self, *, plan: ListingPlan, email: str, listing_id: uuid.UUID) -> str:
        if self.fail:
            raise TransientDependencyError("checkout", "Checkout service is unavailable.")
        self.calls.append({"plan": plan, "email": email, "listing_id": listing_id})
        return f"https://checkout.test/{plan.value}?firmId={listing_id}"


class FakeMailer:
    def __init__(self) -> None:
        self.sent: List[Dict[str, str]] = []
        self.fail_for: set = set()

    def send(self, *, to: str, subject: str, text: str, html: str) -> None:
        if to in self.fail_for:
            raise TransientDependencyError("mailer", "Email could not be sent.")
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    test_engine = create_engine(
        os.environ["TEST_DATABASE_URL"],
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    original_session_local = database_module.SessionLocal
    original_engine = database_module.engine
    database_module.SessionLocal = sessionmaker(bind=test_engine, autoflush=False, expire_on_commit=False)
    database_module.engine = test_engine
    try:
        yield test_engine
    finally:
        database_module.SessionLocal = original_session_local
        database_module.engine = original_engine
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[Callable[[], Session]]:
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        with factory() as cleanup:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup.execute(table.delete())
            cleanup.commit()


@pytest.fixture()
def db_session(session_factory: Callable[[], Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def settings() -> ListingSettings:
    return ListingSettings(
        frontend_base_url="https://directory.test",
        frontend_success_url="https://directory.test/success.html",
        variant_ids={
            ListingPlan.BASIC: "101",
            ListingPlan.STANDARD: "102",
            ListingPlan.PREMIUM: "103",
        },
    )


@pytest.fixture()
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture()
def media_store() -> FakeMediaStore:
    return FakeMediaStore()


@pytest.fixture()
def checkout_gateway() -> FakeCheckoutGateway:
    return FakeCheckoutGateway()


@pytest.fixture()
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture()
def lifecycle(
    geocoder: FakeGeocoder,
    media_store: FakeMediaStore,
    checkout_gateway: FakeCheckoutGateway,
    settings: ListingSettings,
    clock: FrozenClock,
) -> ListingLifecycleService:
    return ListingLifecycleService(
        geocoder=geocoder,
        media_store=media_store,
        checkout_gateway=checkout_gateway,
        settings=settings,
        clock=clock,
    )


@pytest.fixture()
def make_listing(db_session: Session) -> Callable[..., Listing]:
    """Insert a listing in ``state`` directly, bypassing registration."""
    counter = {"value": 0}

    def _make(state: ListingState, **overrides: Any) -> Listing:
        counter["value"] += 1
        values: Dict[str, Any] = {
            "id": uuid.uuid4(),
            "email": f"owner{counter['value']}@example.com",
            "name": f"Fixers {counter['value']}",
            "phone": "+38970123456",
            "address": "Partizanska 1",
            "city": "Skopje",
            "category": "plumbing",
            "country": "MK",
            "plan": "basic",
            "latitude": SKOPJE.latitude,
            "longitude": SKOPJE.longitude,
            "photos": [],
        }
        values.update(state.columns())
        values.update(overrides)
        listing = Listing(**values)
        db_session.add(listing)
        db_session.commit()
        return listing

    return _make


@pytest.fixture()
def api_app(
    session_factory: Callable[[], Session],
    lifecycle: ListingLifecycleService,
    mailer: FakeMailer,
    settings: ListingSettings,
    clock: FrozenClock,
) -> "FastAPI":
    """Routers mounted as in ``web.main`` with collaborators replaced by fakes."""
    from fastapi import FastAPI

    from database import get_db
    from services.listing_credentials import ListingCredentialService
    from services.maintenance.listing_sweeper import ExpirySweeper
    from web import deps
    from web.routers import admin, health, listings, payments

    app = FastAPI()
    for module in (listings, payments, admin, health):
        app.include_router(module.router, prefix="/api/v1")

    def _override_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    sweeper = ExpirySweeper(session_factory, settings=settings, mailer=mailer, clock=clock, interval_seconds=3600)
    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[deps.get_lifecycle_service] = lambda: lifecycle
    app.dependency_overrides[deps.get_credential_service] = lambda: ListingCredentialService(lifecycle, mailer)
    app.dependency_overrides[deps.get_sweeper] = lambda: sweeper
    app.state.sweeper = sweeper
    return app


@pytest.fixture()
def api_client(api_app: "FastAPI") -> Iterator["TestClient"]:
    from fastapi.testclient import TestClient

    client = TestClient(api_app)
    try:
        yield client
    finally:
        client.close()

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="gymledger-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'ledger.db')}"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["GATEWAY_KEY_ID"] = "rzp_test_key"
os.environ["GATEWAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["GATEWAY_WEBHOOK_SECRET"] = "whsec_test"

import itertools
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from gymledger.api.deps import get_payment_gateway, get_queue
from gymledger.core.db import SessionLocal, engine
from gymledger.core.errors import PaymentServiceError
from gymledger.main import app
from gymledger.models import Base, Gym, Plan, Role, User
from gymledger.services.auth import create_access_token, user_cache
from gymledger.services.gateway import GatewayOrder, RazorpayGateway, hmac_sha256_hex
from gymledger.services.queue import build_envelope, encode_envelope
from gymledger.worker import job_families, run_job

WEBHOOK_SECRET = "whsec_test"
KEY_SECRET = "rzp_test_secret"


class RecordingQueue:
    """In-memory stand-in for the broker; keeps jobs in publish order."""

    def __init__(self):
        self.jobs = []
        self.job_ids = []
        self.fail = False

    def enqueue(self, job_type, payload, job_id=None):
        if self.fail:
            raise RuntimeError("broker down")
        self.jobs.append((job_type, payload))
        self.job_ids.append(job_id)

    def reset(self):
        self.jobs.clear()
        self.job_ids.clear()

    def of(self, job_type):
        return [payload for t, payload in self.jobs if t == job_type]

    def events(self):
        return [payload["event"] for t, payload in self.jobs if t == "notification"]


class FakeGateway(RazorpayGateway):
    """Real signature checks, canned orders."""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret=KEY_SECRET, base_url="http://gateway.invalid")
        self.orders = []
        self.fail = False
        self._ids = itertools.count(1)

    def create_order(self, amount_minor_units, receipt, currency, notes=None):
        if self.fail:
            raise PaymentServiceError()
        order = GatewayOrder(id=f"order_{next(self._ids):04d}", amount=amount_minor_units, currency=currency, receipt=receipt[:40])
        self.orders.append((order, notes or {}))
        return order


def sign(order_id, payment_id):
    return hmac_sha256_hex(KEY_SECRET, f"{order_id}|{payment_id}".encode("utf-8"))


def sign_webhook(raw_body):
    return hmac_sha256_hex(WEBHOOK_SECRET, raw_body)


def run_jobs(queue, session_factory=SessionLocal):
    """Feed every recorded job (including jobs chained by handlers) through the worker."""
    families = {f.job_type: f for f in job_families()}
    outcomes = []
    i = 0
    while i < len(queue.jobs):
        job_type, payload = queue.jobs[i]
        job_id = queue.job_ids[i]
        body = encode_envelope(build_envelope(job_type, payload, job_id=job_id))
        outcomes.append(run_job(families[job_type], body, 1, queue, session_factory=session_factory))
        i += 1
    return outcomes


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    user_cache.clear()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def gateway():
    return FakeGateway()


def make_user(db, email, role=Role.USER, name=None):
    user = User(email=email, name=name, password_hash="not-a-real-hash", role=role.value, is_active=True)
    db.add(user)
    db.commit()
    return user


def make_gym(db, owner=None, name="Iron Temple"):
    gym = Gym(name=name, owner_id=owner.id if owner else None)
    db.add(gym)
    db.commit()
    return gym


def make_plan(db, gym, price=1000, duration_value=1, duration_unit="MONTH", name="Monthly", is_active=True):
    plan = Plan(
        gym_id=gym.id,
        name=name,
        price=price,
        currency="INR",
        duration_value=duration_value,
        duration_unit=duration_unit,
        is_active=is_active,
    )
    db.add(plan)
    db.commit()
    return plan


@pytest.fixture
def seed(db):
    owner = make_user(db, "owner@example.com", Role.OWNER, name="Olga Owner")
    admin = make_user(db, "admin@example.com", Role.ADMIN)
    member = make_user(db, "member@example.com", name="Mira Member")
    gym = make_gym(db, owner)
    plan = make_plan(db, gym)
    return SimpleNamespace(owner=owner, admin=admin, member=member, gym=gym, plan=plan)


def auth_headers(user):
    token = create_access_token(subject=str(user.id), role=user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(gateway, queue):
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_queue] = lambda: queue
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()

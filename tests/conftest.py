from pathlib import Path
import os
import sys

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-with-at-least-32-characters"
os.environ["APP_TIMEZONE"] = "UTC"
for _key in ("SMTP_PRIMARY_HOST", "SMTP_SECONDARY_HOST", "S3_BUCKET_NAME"):
    os.environ.pop(_key, None)

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import emailer
from auth import get_password_hash, issue_token_pair
from database import Base, SessionLocal, engine
from models import Event, EventStatus, EventVisibility, TicketTier, User, UserRole
from rate_limiter import reset_rate_limits
from server import app


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    reset_rate_limits()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def sent_emails(monkeypatch):
    outbox = []

    def fake_send(to_email, subject, html, text):
        outbox.append({"to": to_email, "subject": subject, "html": html, "text": text})

    monkeypatch.setattr(emailer, "send_email", fake_send)
    return outbox


def make_user(db, email, role=UserRole.PARTICIPANT, name=None):
    user = User(
        email=email,
        hashed_password=get_password_hash("password123"),
        name=name or email.split("@")[0].title(),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {issue_token_pair(user)['access_token']}"}


@pytest.fixture
def organizer(db):
    return make_user(db, "organizer@example.com", UserRole.ORGANIZER, "Olivia Organizer")


@pytest.fixture
def participant(db):
    return make_user(db, "pat@example.com", UserRole.PARTICIPANT, "Pat Participant")


@pytest.fixture
def event(db, organizer):
    now = datetime.now(timezone.utc)
    row = Event(
        slug="hack-night",
        organizer_id=organizer.id,
        title="Hack Night",
        status=EventStatus.PUBLISHED,
        visibility=EventVisibility.PUBLIC,
        start_date=now + timedelta(days=10),
        end_date=now + timedelta(days=11),
        registration_deadline=now + timedelta(days=9),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def make_tier(db, event, name="General", quantity=None, price=0.0, sort_order=0, **kwargs):
    tier = TicketTier(event_id=event.id, name=name, quantity=quantity, price=price, sort_order=sort_order, **kwargs)
    db.add(tier)
    db.commit()
    db.refresh(tier)
    return tier


@pytest.fixture
def tier(db, event):
    return make_tier(db, event, "General", quantity=2, price=100.0)

#!/usr/bin/env python3
import os
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from auth import get_password_hash
from judging_service import assign_judges, submit_score
from models import (
    Event,
    EventStatus,
    Rubric,
    Submission,
    TicketTier,
    User,
    UserRole,
    WaitlistEntry,
)
from registration_service import create_confirmed_registration, email_is_registered
from waitlist_service import add_entry
from workspace_service import get_root_workspace, provision_root

DEMO_PASSWORD = 'demo12345'
DEMO_SLUG = 'demo-hackathon'


def load_db_url() -> str:
    load_dotenv('backend/.env')
    db_url = os.environ.get('DATABASE_URL')
    if not db_url:
        raise RuntimeError('DATABASE_URL missing in backend/.env')
    return db_url


def make_session():
    engine = create_engine(load_db_url(), pool_pre_ping=True)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return SessionLocal()


def ensure_user(db, email: str, name: str, role: UserRole = UserRole.PARTICIPANT) -> User:
    row = db.query(User).filter(User.email == email).first()
    if row:
        return row
    row = User(email=email, name=name, role=role, hashed_password=get_password_hash(DEMO_PASSWORD))
    db.add(row)
    db.flush()
    return row


def ensure_event(db, organizer: User) -> Event:
    row = db.query(Event).filter(Event.slug == DEMO_SLUG).first()
    if row:
        return row
    start = datetime.now(timezone.utc) + timedelta(days=21)
    row = Event(
        slug=DEMO_SLUG,
        organizer_id=organizer.id,
        title='Demo Hackathon',
        description='Seeded event for local development.',
        status=EventStatus.PUBLISHED,
        venue='Main Auditorium',
        start_date=start,
        end_date=start + timedelta(days=1),
        registration_deadline=start - timedelta(days=2),
    )
    db.add(row)
    db.flush()
    return row


def ensure_tier(db, event: Event, name: str, price: float, quantity, sort_order: int) -> TicketTier:
    row = db.query(TicketTier).filter(TicketTier.event_id == event.id, TicketTier.name == name).first()
    if row:
        return row
    row = TicketTier(event_id=event.id, name=name, price=price, quantity=quantity, sort_order=sort_order)
    db.add(row)
    db.flush()
    return row


def main():
    db = make_session()
    now = datetime.now(timezone.utc)
    try:
        organizer = ensure_user(db, 'organizer@demo.local', 'Demo Organizer', UserRole.ORGANIZER)
        participants = [ensure_user(db, f'attendee{i}@demo.local', f'Demo Attendee {i}') for i in range(1, 7)]
        judges = [ensure_user(db, f'judge{i}@demo.local', f'Demo Judge {i}') for i in (1, 2)]

        event = ensure_event(db, organizer)
        general = ensure_tier(db, event, 'General', 0, 4, 0)
        ensure_tier(db, event, 'Supporter', 499, None, 1)

        for user in participants[:4]:
            if not email_is_registered(db, event.id, user.email):
                create_confirmed_registration(db, event, general, full_name=user.name, email=user.email, user_id=user.id, now=now)

        for user in participants[4:]:
            exists = (
                db.query(WaitlistEntry.id)
                .filter(WaitlistEntry.event_id == event.id, WaitlistEntry.email == user.email)
                .first()
            )
            if not exists:
                add_entry(db, event, full_name=user.name, email=user.email, ticket_tier_id=general.id)

        rubric = db.query(Rubric).filter(Rubric.event_id == event.id).first()
        if not rubric:
            rubric = Rubric(
                event_id=event.id,
                name='Main Rubric',
                criteria=[
                    {'name': 'Innovation', 'max_score': 25},
                    {'name': 'Execution', 'max_score': 25},
                    {'name': 'Presentation', 'max_score': 10},
                ],
            )
            db.add(rubric)
            db.flush()

            for team_name, marks in (('Team Nova', (22, 20, 8)), ('Team Orbit', (18, 21, 9))):
                submission = Submission(event_id=event.id, rubric_id=rubric.id, team_name=team_name)
                db.add(submission)
                db.flush()
                assign_judges(db, submission, [judge.id for judge in judges])
                submit_score(
                    db,
                    submission,
                    judges[0].id,
                    dict(zip(('Innovation', 'Execution', 'Presentation'), marks)),
                )

        if not get_root_workspace(db, event.id):
            provision_root(db, event, organizer)

        db.commit()

        print('Seeded/updated demo event data:')
        print(f'  - event: {event.slug} ({event.id})')
        print(f'  - users: {1 + len(participants) + len(judges)}')
        print(f'  - credentials for demo users: password={DEMO_PASSWORD}')
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == '__main__':
    main()

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from auth import get_password_hash
from database import Base, engine, get_db
from models import SystemConfig, User, UserRole

logger = logging.getLogger(__name__)

MIGRATION_MARKER_KEY = "migration:backend_bootstrap:v1"

DEFAULT_CONFIG = {
    "registration_open": "true",
    "waitlist_auto_invite": "false",
}


def _ensure_config_table() -> None:
    SystemConfig.__table__.create(bind=engine, checkfirst=True)


def has_bootstrap_marker() -> bool:
    _ensure_config_table()
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        return marker is not None
    finally:
        db.close()


def set_bootstrap_marker() -> None:
    _ensure_config_table()
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        value = datetime.now(timezone.utc).isoformat()
        if marker:
            marker.value = value
        else:
            db.add(SystemConfig(key=MIGRATION_MARKER_KEY, value=value))
        db.commit()
    finally:
        db.close()


def clear_bootstrap_marker() -> bool:
    _ensure_config_table()
    db = next(get_db())
    try:
        marker = db.query(SystemConfig).filter(SystemConfig.key == MIGRATION_MARKER_KEY).first()
        if not marker:
            return False
        db.delete(marker)
        db.commit()
        return True
    finally:
        db.close()


def ensure_default_config(db: Session) -> None:
    for key, value in DEFAULT_CONFIG.items():
        row = db.query(SystemConfig).filter(SystemConfig.key == key).first()
        if not row:
            db.add(SystemConfig(key=key, value=value))
    db.commit()


def ensure_default_admin(db: Session) -> None:
    email = (os.environ.get("DEFAULT_ADMIN_EMAIL") or "").strip().lower()
    password = os.environ.get("DEFAULT_ADMIN_PASSWORD") or ""
    if not email or not password:
        logger.info("DEFAULT_ADMIN_EMAIL/DEFAULT_ADMIN_PASSWORD not set; skipping admin seed.")
        return
    user = db.query(User).filter(User.email == email).first()
    if user:
        if user.role != UserRole.ADMIN:
            user.role = UserRole.ADMIN
            db.commit()
        return
    db.add(User(
        email=email,
        hashed_password=get_password_hash(password),
        name="Platform Admin",
        role=UserRole.ADMIN,
    ))
    db.commit()
    logger.info("Created default admin %s", email)


def run_bootstrap_migrations() -> None:
    Base.metadata.create_all(bind=engine)

    db = next(get_db())
    try:
        ensure_default_config(db)
        ensure_default_admin(db)
    finally:
        db.close()

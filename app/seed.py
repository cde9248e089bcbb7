import logging
import uuid

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError, OperationalError

from app.db.session import SessionLocal
from app.core.config import settings
from app.core.security import create_access_token
from app.models.user import User

logger = logging.getLogger(__name__)

DEMO_RESIDENTS = [
    ("resident@smartwaste.lk", "Demo Resident", "+94 77 000 0001"),
    ("resident2@smartwaste.lk", "Second Resident", "+94 77 000 0002"),
]


def ensure_user(db: Session, email: str, name: str, phone: str, role: str = "resident") -> User:
    u = db.query(User).filter(User.email == email).first()
    if u:
        return u
    u = User(
        id=str(uuid.uuid4()),
        email=email,
        full_name=name,
        phone=phone,
        role=role,
        is_active=True,
    )
    db.add(u)
    db.commit()
    return u


def run(db=None, show_tokens: bool = False):
    own_session = db is None
    if own_session:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("[seed] users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        for email, name, phone in DEMO_RESIDENTS:
            u = ensure_user(db, email, name, phone)
            logger.info("[seed] resident %s ready", email)
            if show_tokens and settings.ENV == "local":
                # Login lives in the resident portal
                print(f"{email}: {create_access_token(u.id, expires_minutes=60 * 24)}")
    finally:
        if own_session:
            db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run(show_tokens=True)

from sqlalchemy.orm import Session

from propqr.db import SessionLocal


def session_factory() -> Session:
    return SessionLocal()

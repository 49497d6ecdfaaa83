# backend/app/crud/users.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.security import hash_password
from app.models.user import User


def get_by_email(db: Session, email: str) -> User | None:
    stmt = select(User).where(User.email == email)
    return db.execute(stmt).scalar_one_or_none()


def create_user(db: Session, name: str, email: str, password: str) -> User:
    u = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
    )

    db.add(u)
    db.commit()
    db.refresh(u)
    return u

# backend/app/db/init_db.py
from app.db.base import Base
from app.db.session import engine

# models must be imported so the metadata knows every table
from app import models  # noqa: F401


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)

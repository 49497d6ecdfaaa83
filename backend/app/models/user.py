# backend/app/models/user.py
from datetime import datetime

from sqlalchemy import DateTime, Integer, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)

    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # AEAD blobs (nonce + ciphertext), see app.security.secret_codec
    two_factor_secret: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    two_factor_recovery_codes: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    two_factor_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # bumped on every flush of the row; a stale value aborts the UPDATE
    two_factor_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": two_factor_version}

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "two_factor_confirmed_at": (
                self.two_factor_confirmed_at.isoformat() if self.two_factor_confirmed_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

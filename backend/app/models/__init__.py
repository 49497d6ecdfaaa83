# backend/app/models/__init__.py
from .user import User

__all__ = ["User"]

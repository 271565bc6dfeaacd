from .models import MUTABLE_FIELDS, Session, SessionKey, SessionSettings
from .store import SessionStore

__all__ = ["MUTABLE_FIELDS", "Session", "SessionKey", "SessionSettings", "SessionStore"]

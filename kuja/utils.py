from datetime import datetime, timezone
from typing import Optional
import secrets
import time

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive timestamps; treat them as UTC"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)

def new_reference(prefix: str) -> str:
    """Human-readable unique reference such as MP1718000000000A1B2C3"""
    return f"{prefix}{int(time.time() * 1000)}{secrets.token_hex(3).upper()}"

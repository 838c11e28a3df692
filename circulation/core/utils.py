# circulation/core/utils.py
import uuid
from datetime import datetime, timezone


def new_id(prefix: str) -> str:
    """Generates a prefixed random id, e.g. ``loan_5f1c9a0b2d3e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    """Wall-clock time for the outer layers (API, scheduler). Services take ``now`` as a parameter."""
    return datetime.now(timezone.utc)

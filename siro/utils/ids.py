import json
import uuid
from datetime import datetime, timezone
from typing import Tuple


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ordered_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    """Canonical ordering for an unordered pair of user ids."""
    u1, u2 = sorted([str(user_a), str(user_b)])
    return u1, u2


def pair_key(user_a: str, user_b: str) -> str:
    """Unique key for an unordered pair, unambiguous whatever the ids contain."""
    return json.dumps(list(ordered_pair(user_a, user_b)), separators=(",", ":"))

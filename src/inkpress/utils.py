from __future__ import annotations

import time
import uuid


def unix_now() -> int:
    """Current time as whole unix seconds."""
    return int(time.time())


def new_id() -> str:
    """Random 32-char lowercase hex id (uuid4 without dashes)."""
    return uuid.uuid4().hex


def file_extension(name: str) -> str:
    """Text after the last dot, or ``""`` when the name has none."""
    _, dot, ext = name.rpartition(".")
    return ext if dot else ""

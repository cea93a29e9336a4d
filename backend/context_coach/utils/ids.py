"""Identifier helpers.

Every persisted entity gets a random hex id with a short type prefix so ids
read unambiguously in logs and URLs.
"""

from __future__ import annotations

import uuid

CHUNK = "chk"
JOB = "job"
MEMORY = "mem"
SESSION = "ses"
MESSAGE = "msg"


def new_id(prefix: str | None = None) -> str:
    token = uuid.uuid4().hex
    return f"{prefix}_{token}" if prefix else token


__all__ = ["CHUNK", "JOB", "MEMORY", "SESSION", "MESSAGE", "new_id"]

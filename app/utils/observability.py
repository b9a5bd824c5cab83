"""Request correlation: every request gets an id that follows it into queued jobs."""
from __future__ import annotations
import re
import uuid
from typing import Mapping

REQUEST_ID_HEADER = "X-Request-ID"

# Inbound ids are echoed into headers and logs; anything else is replaced.
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

def ensure_request_id(headers: Mapping[str, str]) -> str:
    inbound = headers.get(REQUEST_ID_HEADER)
    if inbound and _SAFE_REQUEST_ID.match(inbound):
        return inbound
    return uuid.uuid4().hex

__all__ = ["ensure_request_id", "REQUEST_ID_HEADER"]

"""Content-derived message ids.

The id is a pure function of ``(type, payload)``: the payload is serialized
as canonical JSON (sorted keys, no whitespace) and hashed with SHA-256, so
any client in any language can reproduce it.
"""

import hashlib
import json
from typing import Any

ID_DIGEST_LENGTH = 16


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def message_id(message_type: str, payload: Any) -> str:
    digest = hashlib.sha256(
        f"{message_type}\n{canonical_json(payload)}".encode("utf-8")
    ).hexdigest()
    return f"{message_type}_{digest[:ID_DIGEST_LENGTH]}"

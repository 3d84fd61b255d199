"""
Pseudonymous session identifiers.

A session id correlates the views of one browser session without requiring
a login. Browsers keep it in sessionStorage (see capture.tracking_script);
Python callers pass any session-scoped mutable mapping.
"""

import secrets
import string
import time
from typing import MutableMapping, Optional

SESSION_STORAGE_KEY = "tracking_session_id"

SERVER_SESSION_PREFIX = "server"

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_SUFFIX_LENGTH = 11


def _random_suffix() -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(_SUFFIX_LENGTH))


def generate_session_id() -> str:
    """Return `<epoch-millis>-<base36 suffix>`."""
    return f"{int(time.time() * 1000)}-{_random_suffix()}"


def generate_server_session_id() -> str:
    """Return `server-<epoch-millis>-<base36 suffix>` for clients that sent none."""
    return f"{SERVER_SESSION_PREFIX}-{generate_session_id()}"


def get_session_id(storage: Optional[MutableMapping[str, str]]) -> str:
    """Get or create the session id held in `storage`.

    Returns an empty string when there is no storage to persist into, so
    callers without a browser session never raise.
    """
    if storage is None:
        return ""

    session_id = storage.get(SESSION_STORAGE_KEY)
    if not session_id:
        session_id = generate_session_id()
        storage[SESSION_STORAGE_KEY] = session_id
    return session_id

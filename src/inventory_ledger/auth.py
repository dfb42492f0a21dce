"""Single-user login gate backed by the ``auth`` key of the local store."""

from __future__ import annotations

import hmac
import json
from typing import Optional

from . import log
from .constants import StorageKey
from .core_logic import RuntimeContext
from .data_manager import PersistenceFailure


def login(context: RuntimeContext, username: str, password: str) -> bool:
    """Check the credentials against the configured pair and remember the user.

    Returns:
        bool: ``True`` when the credentials match. Nothing is stored on a
            mismatch.

    Raises:
        PersistenceFailure: If the session record cannot be written.
    """

    expected = context.settings
    user_ok = hmac.compare_digest(str(username).encode(), expected.username.encode())
    password_ok = hmac.compare_digest(str(password).encode(), expected.password.encode())
    if not (user_ok and password_ok):
        log.warning("Rejected login attempt for user %r", username)
        return False
    context.store.set(StorageKey.AUTH.value, json.dumps({"username": username}))
    log.info("User %r logged in", username)
    return True


def logout(context: RuntimeContext) -> None:
    context.store.remove(StorageKey.AUTH.value)
    log.info("Logged out")


def current_user(context: RuntimeContext) -> Optional[str]:
    """Return the logged-in username, or ``None``."""

    blob = context.store.get(StorageKey.AUTH.value)
    if blob is None:
        return None
    try:
        return json.loads(blob)["username"]
    except (json.JSONDecodeError, KeyError, TypeError) as exc:
        raise PersistenceFailure(f"Corrupt 'auth' data: {exc}") from exc

"""Password lookup for declared rights and for the admin client.

Passwords are never read from the configuration file. They come from the
manifest, an environment variable or the system keyring.
"""

from __future__ import annotations

import logging
import os
import re

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "mysql_rights"
DB_PASSWORD_ENV = "MYSQL_RIGHTS_DB_PASSWORD"


def env_var_for_title(title: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", title).upper().strip("_")
    return f"{slug}_PASSWORD"


def resolve_password(title: str, user: str) -> str | None:
    """Resolve a password in order of precedence:
    1. Environment variable derived from the title (e.g. ``APP_RW_PASSWORD``)
    2. Keyring entry ``title::user``
    3. Keyring entry for the user alone
    """
    password = os.getenv(env_var_for_title(title))
    if password:
        return password
    try:
        entry = keyring.get_password(KEYRING_SERVICE, f"{title}::{user}")
        if entry:
            return entry
        return keyring.get_password(KEYRING_SERVICE, user)
    except KeyringError as e:
        logger.warning("Keyring unavailable while resolving %s: %s", title, e)
        return None


def resolve_db_password(db_user: str | None) -> str | None:
    """Password of the admin account the mysql client logs in with."""
    password = os.getenv(DB_PASSWORD_ENV)
    if password:
        return password
    if not db_user:
        return None
    try:
        return keyring.get_password(KEYRING_SERVICE, f"admin::{db_user}")
    except KeyringError as e:
        logger.warning("Keyring unavailable for admin user %s: %s", db_user, e)
        return None

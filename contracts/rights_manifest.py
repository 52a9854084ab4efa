"""Rights manifest schema and helpers (v1.0).

A manifest lists the rights to converge. It is written in YAML (or JSON, a
YAML subset) and validated against :data:`RIGHTS_MANIFEST_SCHEMA` before any
:class:`~mysql_rights.data_models.GrantIntent` is built.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml
from jsonschema import Draft7Validator

from mysql_rights.credentials import resolve_db_password, resolve_password
from mysql_rights.data_models import GrantIntent
from mysql_rights.errors import InvalidIntent
from mysql_rights.logger import register_secrets

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

_PRIVILEGES = {
    "oneOf": [
        {"type": "string", "minLength": 1},
        {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
            "minItems": 1,
        },
    ]
}

_RIGHT_FIELDS: dict[str, Any] = {
    "host": {"type": "string", "minLength": 1},
    "privileges": _PRIVILEGES,
    "grant_option": {"type": "boolean"},
    "ensure": {"type": "string", "enum": ["present", "absent"]},
    "require_user": {"type": "boolean"},
    "db_host": {"type": "string", "minLength": 1},
    "db_user": {"type": "string", "minLength": 1},
    "db_password_env": {"type": "string", "minLength": 1},
}

RIGHTS_MANIFEST_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Rights Manifest",
    "type": "object",
    "properties": {
        "manifest_version": {"type": "string", "const": SCHEMA_VERSION},
        "defaults": {
            "type": "object",
            "properties": _RIGHT_FIELDS,
            "additionalProperties": False,
        },
        "rights": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "minLength": 1},
                    "database": {"type": "string", "minLength": 1},
                    "user": {"type": "string", "minLength": 1},
                    "password": {"type": "string"},
                    "password_env": {"type": "string", "minLength": 1},
                    "requires": {
                        "type": "array",
                        "items": {"type": "string", "minLength": 1},
                    },
                    **_RIGHT_FIELDS,
                },
                "required": ["database", "user"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["manifest_version", "rights"],
    "additionalProperties": False,
}


@dataclass
class RightsManifest:
    """Intents declared by a manifest plus their ordering constraints."""

    intents: List[GrantIntent]
    requires: Dict[str, List[str]] = field(default_factory=dict)
    require_user: Dict[str, bool] = field(default_factory=dict)


def validate_manifest(data: dict[str, Any]) -> dict[str, Any]:
    """Validate *data* against :data:`RIGHTS_MANIFEST_SCHEMA`.

    Raises ``jsonschema.ValidationError`` if the structure is invalid and
    ``ValueError`` for duplicate titles or ``requires`` entries that do not
    name an earlier right.
    """

    Draft7Validator(RIGHTS_MANIFEST_SCHEMA).validate(data)

    seen: set[str] = set()
    for entry in data["rights"]:
        title = _title(entry)
        if title in seen:
            raise ValueError(f"Duplicate right title: {title}")
        for required in entry.get("requires", []):
            if required not in seen:
                raise ValueError(
                    f"Right '{title}' requires '{required}', which must be listed before it"
                )
        seen.add(title)
    return data


def _title(entry: dict[str, Any]) -> str:
    return entry.get("title") or f"{entry['user']}@{entry.get('host', 'localhost')}/{entry['database']}"


def _password(entry: dict[str, Any], title: str) -> str | None:
    if "password" in entry:
        return entry["password"]
    env_name = entry.get("password_env")
    if env_name:
        value = os.getenv(env_name)
        if value is None:
            raise ValueError(f"Environment variable {env_name} for '{title}' is not set")
        return value
    return resolve_password(title, entry["user"])


def _db_password(entry: dict[str, Any], title: str) -> str | None:
    """Admin password for a right that logs in as its own ``db_user``."""
    env_name = entry.get("db_password_env")
    if env_name:
        value = os.getenv(env_name)
        if value is None:
            raise ValueError(f"Environment variable {env_name} for '{title}' is not set")
        return value
    if entry.get("db_user"):
        return resolve_db_password(entry["db_user"])
    return None


def build_manifest(data: dict[str, Any], require_password: bool = True) -> RightsManifest:
    """Turn validated manifest data into :class:`GrantIntent` objects.

    Missing passwords are looked up with :func:`resolve_password`. When
    ``require_password`` is set, a right that must be present and has no
    password is rejected. A right with its own ``db_user`` takes the admin
    password from ``db_password_env`` or from :func:`resolve_db_password`.
    """

    validate_manifest(data)
    defaults = data.get("defaults", {})
    manifest = RightsManifest(intents=[])
    for raw in data["rights"]:
        entry = {**defaults, **raw}
        title = _title(entry)
        password = _password(entry, title)
        ensure = entry.get("ensure", "present")
        if password is None:
            if require_password and ensure == "present":
                raise InvalidIntent(f"No password found for '{title}'")
            password = ""
        db_password = _db_password(entry, title)
        register_secrets([password, db_password])
        kwargs = {
            key: entry[key]
            for key in ("host", "privileges", "grant_option", "db_host", "db_user")
            if key in entry
        }
        if db_password is not None:
            kwargs["db_password"] = db_password
        manifest.intents.append(
            GrantIntent(
                database=entry["database"],
                user=entry["user"],
                password=password,
                ensure=ensure,
                title=title,
                **kwargs,
            )
        )
        manifest.requires[title] = list(entry.get("requires", []))
        manifest.require_user[title] = bool(entry.get("require_user", False))
    logger.info("Loaded %d rights", len(manifest.intents))
    return manifest


def load_manifest(path: str | Path, require_password: bool = True) -> RightsManifest:
    """Load, validate and build a manifest file."""

    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping")
    return build_manifest(data, require_password=require_password)

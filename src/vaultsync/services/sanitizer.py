"""Name sanitization for Kubernetes secret names and secret data keys."""

from __future__ import annotations

import re

from vaultsync.config import SanitizerConfig
from vaultsync.errors import InvalidName

MAX_SECRET_NAME_LENGTH = 253

_SECRET_NAME_INVALID = re.compile(r"[^a-z0-9-]")
_DASH_RUN = re.compile(r"-+")
_FIELD_KEY_INVALID = re.compile(r"[^-._a-zA-Z0-9]")
_ALNUM = re.compile(r"[a-zA-Z0-9]")

_DEFAULT_SANITIZER = SanitizerConfig()


def sanitize_secret_name(name: str | None) -> str:
    """Convert an arbitrary vault item name into a valid Kubernetes secret name.

    Args:
        name: Raw item name or ``secret-name`` override.

    Returns:
        A lowercase DNS-style name of at most 253 characters.

    Raises:
        InvalidName: If the input is blank or nothing usable remains.
    """
    if name is None or not name.strip():
        raise InvalidName(
            "Secret name cannot be empty. Provide a valid item name or set the "
            "'secret-name' custom field."
        )
    sanitized = _SECRET_NAME_INVALID.sub("-", name.lower())
    sanitized = _DASH_RUN.sub("-", sanitized).strip("-")
    if not sanitized:
        raise InvalidName(
            f"Secret name '{name}' becomes empty after sanitization. Use at least one "
            "alphanumeric character or set the 'secret-name' custom field."
        )
    if len(sanitized) > MAX_SECRET_NAME_LENGTH:
        sanitized = sanitized[:MAX_SECRET_NAME_LENGTH].rstrip("-")
    return sanitized


def sanitize_field_key(name: str | None, config: SanitizerConfig = _DEFAULT_SANITIZER) -> str:
    """Convert a custom field name into a valid secret data key.

    Case, dots, dashes and underscores are preserved; every other character
    becomes ``config.replacement_char``.

    Raises:
        InvalidName: If the input is blank or has no alphanumeric character.
    """
    if name is None or not name.strip():
        raise InvalidName("Field name cannot be empty")
    replacement = config.replacement_char
    sanitized = _FIELD_KEY_INVALID.sub(replacement, name)
    sanitized = re.sub(f"{re.escape(replacement)}+", replacement, sanitized)
    sanitized = sanitized.strip(replacement)
    if not _ALNUM.search(sanitized):
        raise InvalidName(f"Field name '{name}' must contain at least one alphanumeric character")
    return sanitized

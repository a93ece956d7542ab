"""Vault item to secret data extraction.

Turns one vault item into the flat key/value mapping it contributes to a
Kubernetes Secret, and parses the sync metadata (target namespaces, name and
key overrides, ignore list) that items carry in custom fields or note lines.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from vaultsync.config import FieldNames, SanitizerConfig, SyncOptions
from vaultsync.errors import VaultSyncError
from vaultsync.schemas.vault_item import VaultItem
from vaultsync.services.sanitizer import sanitize_field_key, sanitize_secret_name

logger = logging.getLogger(__name__)

USERNAME_FIELD_NAMES = ("username", "user", "login")
SSH_KEY_FIELD_NAMES = ("ssh_key", "private_key", "ssh_private_key", "key")

_PEM_HEADER = re.compile(r"-+BEGIN ([A-Z ]*PRIVATE KEY)-+")
_PEM_FOOTER = re.compile(r"-+END ([A-Z ]*PRIVATE KEY)-+")
_WHITESPACE = re.compile(r"\s+")
_PEM_WIDTH = 64

_KV_PREFIX = "#kv:"
_BLOCK_PREFIX = "```secret:"
_FENCE = "```"
_METADATA_NOTE_PREFIXES = (
    "#namespaces:",
    "#secret-name:",
    "#secret-key-password:",
    "#secret-key-username:",
    "#secret-key:",
    _KV_PREFIX,
)
_BACKSLASH_PLACEHOLDER = "\u0001"


@dataclass(frozen=True)
class ItemMetadata:
    """Sync directives carried by a vault item."""

    namespaces: tuple[str, ...] = ()
    secret_name: str | None = None
    password_key: str | None = None
    username_key: str | None = None
    ignored_fields: frozenset[str] = frozenset()


def _note_directive(notes: str, prefix: str) -> str | None:
    for line in notes.split("\n"):
        stripped = line.strip()
        if stripped.lower().startswith(prefix):
            value = stripped[len(prefix):].strip()
            return value or None
    return None


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _override(item: VaultItem, field_names: tuple[str, ...], note_prefix: str) -> str | None:
    value = item.field_value(*field_names)
    if value and value.strip():
        return value.strip()
    return _note_directive(item.notes, note_prefix)


def parse_item_metadata(item: VaultItem, fields: FieldNames = FieldNames()) -> ItemMetadata:
    """Read namespaces, overrides and the ignore list from an item.

    Custom fields win over note lines for single-valued overrides. Namespaces
    from the custom field and from every ``#namespaces:`` note line are
    merged in order with duplicates removed.
    """
    namespaces: list[str] = []
    candidates = _split_csv(item.field_value(fields.namespaces, "namespaces"))
    for line in item.notes.split("\n"):
        stripped = line.strip()
        if stripped.lower().startswith("#namespaces:"):
            candidates.extend(_split_csv(stripped[len("#namespaces:"):]))
    for namespace in candidates:
        if namespace not in namespaces:
            namespaces.append(namespace)

    password_key = _override(
        item, (fields.secret_key_password, "secret-key-password"), "#secret-key-password:"
    ) or _override(item, (fields.legacy_secret_key, "secret-key"), "#secret-key:")

    ignored = _split_csv(item.field_value(fields.ignore, "ignore-field"))
    return ItemMetadata(
        namespaces=tuple(namespaces),
        secret_name=_override(item, (fields.secret_name, "secret-name"), "#secret-name:"),
        password_key=password_key,
        username_key=_override(
            item, (fields.secret_key_username, "secret-key-username"), "#secret-key-username:"
        ),
        ignored_fields=frozenset(name.lower() for name in ignored),
    )


def metadata_field_names(fields: FieldNames = FieldNames()) -> frozenset[str]:
    """Lowercased custom field names that steer sync instead of carrying data."""
    return frozenset(
        name.lower()
        for name in (
            fields.namespaces,
            "namespaces",
            fields.secret_name,
            "secret-name",
            fields.secret_key_password,
            "secret-key-password",
            fields.legacy_secret_key,
            "secret-key",
            fields.secret_key_username,
            "secret-key-username",
            fields.ignore,
            "ignore-field",
        )
    )


def target_secret_name(item: VaultItem, fields: FieldNames = FieldNames()) -> str:
    """Sanitized secret name for an item: the ``secret-name`` override or the item name.

    Raises:
        InvalidName: If neither yields a usable Kubernetes name.
    """
    override = parse_item_metadata(item, fields).secret_name
    return sanitize_secret_name(override or item.name)


def convert_escapes(value: str) -> str:
    """Turn literal ``\\n``, ``\\r`` and ``\\t`` into real characters, keeping ``\\\\``."""
    return (
        value.replace("\\\\", _BACKSLASH_PLACEHOLDER)
        .replace("\\n", "\n")
        .replace("\\r", "\r")
        .replace("\\t", "\t")
        .replace(_BACKSLASH_PLACEHOLDER, "\\")
    )


def normalize_newlines(value: str) -> str:
    return value.replace("\r\n", "\n").replace("\r", "\n")


def format_multiline_value(value: str | None) -> str:
    if not value:
        return ""
    return normalize_newlines(convert_escapes(value))


def _wrap(text: str, width: int) -> str:
    return "\n".join(text[i:i + width] for i in range(0, len(text), width))


def format_secret_value(value: str | None) -> str:
    """Normalize a primary value, rewrapping PEM private keys into canonical form.

    A value with matching ``BEGIN``/``END <TYPE> PRIVATE KEY`` markers is
    rebuilt as header, body wrapped at 64 columns, and footer. Anything else
    (including mismatched marker types) only gets newline normalization.
    """
    normalized = format_multiline_value(value)
    header = _PEM_HEADER.search(normalized)
    footer = _PEM_FOOTER.search(normalized)
    if header is None or footer is None:
        return normalized
    key_type = header.group(1).strip()
    if key_type != footer.group(1).strip():
        return normalized
    start, end = header.end(), footer.start()
    if end <= start:
        return normalized
    body = _WHITESPACE.sub("", normalized[start:end])
    return "\n".join(
        [f"-----BEGIN {key_type}-----", _wrap(body, _PEM_WIDTH), f"-----END {key_type}-----"]
    )


def pure_note_body(notes: str | None) -> str:
    """Note text without sync directives or embedded secret blocks.

    Leading and trailing blank lines are trimmed.
    """
    if not notes:
        return ""
    kept: list[str] = []
    in_block = False
    for line in normalize_newlines(notes).split("\n"):
        if in_block:
            if line.startswith(_FENCE):
                in_block = False
            continue
        if line.lower().startswith(_BLOCK_PREFIX) and line[len(_BLOCK_PREFIX):].strip():
            in_block = True
            continue
        if line.strip().lower().startswith(_METADATA_NOTE_PREFIXES):
            continue
        kept.append(line)
    while kept and not kept[0].strip():
        kept.pop(0)
    while kept and not kept[-1].strip():
        kept.pop()
    return "\n".join(kept)


def note_secret_entries(notes: str | None) -> dict[str, str]:
    """Parse ``#kv:key=value`` lines and fenced ``secret:<key>`` blocks from notes.

    Keys are returned raw; an unterminated block runs to the end of the note.
    """
    entries: dict[str, str] = {}
    if not notes:
        return entries
    block_key: str | None = None
    buffer: list[str] = []
    for line in normalize_newlines(notes).split("\n"):
        if block_key is not None:
            if line.startswith(_FENCE):
                entries[block_key] = "\n".join(buffer)
                block_key, buffer = None, []
            else:
                buffer.append(line)
            continue
        if line.lower().startswith(_BLOCK_PREFIX):
            key = line[len(_BLOCK_PREFIX):].strip()
            if key:
                block_key = key
                continue
        stripped = line.strip()
        if stripped.lower().startswith(_KV_PREFIX):
            key, sep, value = stripped[len(_KV_PREFIX):].partition("=")
            if sep and key.strip():
                entries[key.strip()] = value
    if block_key is not None:
        entries[block_key] = "\n".join(buffer)
    return entries


def resolve_username(item: VaultItem) -> str:
    if item.login is not None and item.login.username:
        return item.login.username
    return item.field_value(*USERNAME_FIELD_NAMES) or ""


def resolve_primary_value(item: VaultItem) -> str:
    """Login password, item password, SSH private key, or an SSH key custom field."""
    if item.login is not None and item.login.password:
        return item.login.password
    if item.password:
        return item.password
    if item.ssh_key is not None and item.ssh_key.private_key.strip():
        return item.ssh_key.private_key
    return item.field_value(*SSH_KEY_FIELD_NAMES) or ""


class SecretDataExtractor:
    """Maps vault items to secret data.

    Args:
        options: Engine options; field names and the sanitizer config are read from it.
        vault: Optional vault store used to hydrate SSH key payloads that the
            bulk listing omits.
    """

    def __init__(self, options: SyncOptions | None = None, vault=None) -> None:
        self.options = options or SyncOptions()
        self.vault = vault

    @property
    def fields(self) -> FieldNames:
        return self.options.fields

    @property
    def sanitizer(self) -> SanitizerConfig:
        return self.options.sanitizer

    def metadata(self, item: VaultItem) -> ItemMetadata:
        return parse_item_metadata(item, self.fields)

    def secret_name(self, item: VaultItem) -> str:
        return target_secret_name(item, self.fields)

    async def hydrate(self, item: VaultItem) -> VaultItem:
        """Re-fetch SSH key items whose key payload is incomplete.

        Hydration failures are logged and the item is returned unchanged.
        """
        if self.vault is None or not item.is_ssh_key:
            return item
        if item.ssh_key is not None and item.ssh_key.is_complete:
            return item
        try:
            full = await self.vault.fetch_item(item.id)
        except VaultSyncError:
            logger.debug("Failed to hydrate SSH key payload for item %s", item.id, exc_info=True)
            return item
        if full is None or full.ssh_key is None:
            return item
        return item.model_copy(update={"ssh_key": full.ssh_key})

    async def extract_item(self, item: VaultItem) -> dict[str, str]:
        return self.extract(await self.hydrate(item))

    def extract(self, item: VaultItem) -> dict[str, str]:
        """Build the key/value mapping one item contributes to its secret.

        Raises:
            InvalidName: If the secret name, an override key or a custom
                field name cannot be sanitized.
        """
        meta = self.metadata(item)
        secret_name = sanitize_secret_name(meta.secret_name or item.name)
        prefix = sanitize_field_key(secret_name, self.sanitizer)
        data: dict[str, str] = {}

        username = resolve_username(item)
        if username:
            key = (
                sanitize_field_key(meta.username_key, self.sanitizer)
                if meta.username_key
                else f"{prefix}-username"
            )
            data[key] = format_multiline_value(username)

        primary_key = sanitize_field_key(
            meta.password_key or meta.secret_name or item.name, self.sanitizer
        )
        primary = resolve_primary_value(item)
        if primary:
            data[primary_key] = format_secret_value(primary)
        else:
            body = pure_note_body(item.notes)
            data[primary_key] = format_multiline_value(body) if body.strip() else item.name

        if item.ssh_key is not None:
            if item.ssh_key.public_key.strip():
                data.setdefault(
                    f"{prefix}-public-key", format_multiline_value(item.ssh_key.public_key)
                )
            if item.ssh_key.fingerprint.strip():
                data.setdefault(f"{prefix}-fingerprint", item.ssh_key.fingerprint)

        if item.card is not None:
            card = item.card
            expiry = "/".join(part for part in (card.exp_month, card.exp_year) if part)
            for suffix, value in (
                ("cardholder", card.cardholder_name),
                ("number", card.number),
                ("code", card.code),
                ("brand", card.brand),
                ("expiry", expiry),
            ):
                if value:
                    data.setdefault(f"{prefix}-{suffix}", value)

        if item.identity is not None:
            identity = item.identity
            for suffix, value in (
                ("email", identity.email),
                ("first-name", identity.first_name),
                ("last-name", identity.last_name),
                ("identity-username", identity.username),
            ):
                if value:
                    data.setdefault(f"{prefix}-{suffix}", value)

        metadata_names = metadata_field_names(self.fields)
        for field in item.fields:
            if not field.name.strip() or not field.value:
                continue
            if field.name.lower() in metadata_names or field.name.lower() in meta.ignored_fields:
                continue
            key = sanitize_field_key(field.name, self.sanitizer)
            if key not in data:
                data[key] = format_multiline_value(field.value)

        for raw_key, value in note_secret_entries(item.notes).items():
            key = sanitize_field_key(raw_key, self.sanitizer)
            if key not in data:
                data[key] = format_multiline_value(value)

        logger.debug("Extracted %d key(s) from item %s", len(data), item.id)
        return data

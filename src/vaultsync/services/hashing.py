"""Content hashing for change detection.

Both per-item hashes are built from one field enumeration,
:func:`item_hash_parts`, which lists every item attribute the extractor
reads. Adding an input to :class:`~vaultsync.services.extractor.SecretDataExtractor`
means adding it here too, otherwise edits to that input go unnoticed by the
quick-hash skip path.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Iterable, Sequence

from vaultsync.config import FieldNames
from vaultsync.schemas.vault_item import VaultItem
from vaultsync.services.extractor import metadata_field_names, parse_item_metadata

CONTENT_HASH_LENGTH = 8


def _digest(parts: Iterable[str]) -> str:
    raw = hashlib.sha256("|".join(parts).encode("utf-8")).digest()
    return base64.b64encode(raw).decode("ascii")


def item_hash_parts(item: VaultItem, fields: FieldNames = FieldNames()) -> list[str]:
    """Enumerate every extractor input of an item as ``label:value`` strings."""
    parts = [f"name:{item.name}", f"type:{item.type}"]
    if item.password:
        parts.append(f"password:{item.password}")
    if item.login is not None:
        parts.append(f"login_user:{item.login.username}")
        parts.append(f"login_pass:{item.login.password}")
        parts.extend(f"uri:{uri.uri}" for uri in item.login.uris)
    if item.notes:
        parts.append(f"notes:{item.notes}")
    if item.ssh_key is not None:
        parts.append(f"ssh_private:{item.ssh_key.private_key}")
        parts.append(f"ssh_public:{item.ssh_key.public_key}")
        parts.append(f"ssh_fingerprint:{item.ssh_key.fingerprint}")
    if item.card is not None:
        card = item.card
        parts.append(f"card_name:{card.cardholder_name}")
        parts.append(f"card_number:{card.number}")
        parts.append(f"card_code:{card.code}")
        parts.append(f"card_brand:{card.brand}")
        parts.append(f"card_exp:{card.exp_month}/{card.exp_year}")
    if item.identity is not None:
        identity = item.identity
        parts.append(
            f"identity:{identity.first_name}:{identity.last_name}:"
            f"{identity.email}:{identity.username}"
        )

    # Metadata fields rename keys and retarget secrets, so they count too
    metadata_names = metadata_field_names(fields)
    for field in sorted(item.fields, key=lambda f: (f.name, f.value)):
        label = "meta" if field.name.lower() in metadata_names else "field"
        parts.append(f"{label}:{field.name}:{field.value}:{field.type}")

    for attachment in sorted(item.attachments, key=lambda a: a.file_name):
        parts.append(f"attachment:{attachment.file_name}:{attachment.size}")
    return parts


def content_hash(item: VaultItem, fields: FieldNames = FieldNames()) -> str:
    """Short digest of an item's extractable content, used inside the quick hash."""
    return _digest(item_hash_parts(item, fields))[:CONTENT_HASH_LENGTH]


def item_hash(item: VaultItem, fields: FieldNames = FieldNames()) -> str:
    """Full digest of an item for the secret's stored hash annotation.

    Extends :func:`item_hash_parts` with the resolved namespaces and the
    revision timestamp.
    """
    namespaces = ",".join(sorted(parse_item_metadata(item, fields).namespaces))
    return _digest(
        [*item_hash_parts(item, fields), f"namespaces:{namespaces}", f"revision:{item.revision_stamp}"]
    )


def combined_hash(items: Sequence[VaultItem], fields: FieldNames = FieldNames()) -> str:
    """Hash annotation value for a secret built from several items.

    Item hashes are sorted so the value does not depend on processing order.
    """
    return "|".join(sorted(item_hash(item, fields) for item in items))


def quick_hash(items: Sequence[VaultItem], fields: FieldNames = FieldNames()) -> str:
    """Whole-vault digest over item count and each item's id, revision and content hash."""
    entries = [
        f"{item.id}:{item.revision_stamp}:{content_hash(item, fields)}"
        for item in sorted(items, key=lambda i: i.id)
    ]
    return _digest([str(len(items)), *entries])

"""Pydantic v2 models for vault items as emitted by ``bw list items --raw``.

Field aliases follow the CLI's camelCase JSON. Every nested block tolerates
``null`` values because the CLI omits or nulls fields freely depending on the
item type.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ItemType(IntEnum):
    """Vault item type discriminator."""

    LOGIN = 1
    SECURE_NOTE = 2
    CARD = 3
    IDENTITY = 4
    SSH_KEY = 5


class _VaultModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _null_to_default(cls, value, info):
        # The CLI emits explicit nulls for empty string fields
        if value is None:
            field = cls.model_fields[info.field_name]
            if field.annotation is str:
                return ""
        return value


class UriInfo(_VaultModel):
    uri: str = ""
    match: int | None = None


class LoginInfo(_VaultModel):
    username: str = ""
    password: str = ""
    totp: str | None = None
    uris: list[UriInfo] = Field(default_factory=list)

    @field_validator("uris", mode="before")
    @classmethod
    def _none_uris(cls, value):
        return value or []


class SshKeyInfo(_VaultModel):
    private_key: str = Field(default="", alias="privateKey")
    public_key: str = Field(default="", alias="publicKey")
    fingerprint: str = Field(default="", alias="keyFingerprint")

    @property
    def is_complete(self) -> bool:
        return bool(
            self.private_key.strip() and self.public_key.strip() and self.fingerprint.strip()
        )


class CardInfo(_VaultModel):
    cardholder_name: str = Field(default="", alias="cardholderName")
    brand: str = ""
    number: str = ""
    exp_month: str = Field(default="", alias="expMonth")
    exp_year: str = Field(default="", alias="expYear")
    code: str = ""


class IdentityInfo(_VaultModel):
    title: str = ""
    first_name: str = Field(default="", alias="firstName")
    middle_name: str = Field(default="", alias="middleName")
    last_name: str = Field(default="", alias="lastName")
    email: str = ""
    phone: str = ""
    company: str = ""
    username: str = ""


class FieldInfo(_VaultModel):
    """A custom field. ``type`` is 0=text, 1=hidden, 2=boolean, 3=linked."""

    name: str = ""
    value: str = ""
    type: int = 0

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value):
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)


class AttachmentInfo(_VaultModel):
    id: str = ""
    file_name: str = Field(default="", alias="fileName")
    size: int = 0

    @field_validator("size", mode="before")
    @classmethod
    def _parse_size(cls, value):
        # The CLI reports attachment sizes as strings
        if value in (None, ""):
            return 0
        return int(value)


class VaultItem(_VaultModel):
    """One vault entry (login, secure note, card, identity or SSH key)."""

    id: str
    name: str = ""
    type: int = ItemType.LOGIN
    notes: str = ""
    password: str = ""
    folder_id: str | None = Field(default=None, alias="folderId")
    organization_id: str | None = Field(default=None, alias="organizationId")
    collection_ids: list[str] = Field(default_factory=list, alias="collectionIds")
    login: LoginInfo | None = None
    ssh_key: SshKeyInfo | None = Field(default=None, alias="sshKey")
    card: CardInfo | None = None
    identity: IdentityInfo | None = None
    fields: list[FieldInfo] = Field(default_factory=list)
    attachments: list[AttachmentInfo] = Field(default_factory=list)
    revision_date: datetime = Field(default=_EPOCH, alias="revisionDate")
    creation_date: datetime | None = Field(default=None, alias="creationDate")
    deleted_date: datetime | None = Field(default=None, alias="deletedDate")

    @field_validator("fields", "attachments", "collection_ids", mode="before")
    @classmethod
    def _none_lists(cls, value):
        return value or []

    @field_validator("revision_date", mode="before")
    @classmethod
    def _none_revision(cls, value):
        return value or _EPOCH

    @property
    def is_ssh_key(self) -> bool:
        return self.type == ItemType.SSH_KEY

    @property
    def revision_stamp(self) -> str:
        """Revision timestamp in a stable ISO-8601 form for hashing."""
        stamp = self.revision_date
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return stamp.astimezone(timezone.utc).isoformat()

    def field_value(self, *names: str) -> str | None:
        """Return the first non-empty custom field value matching any name (case-insensitive)."""
        for name in names:
            for field in self.fields:
                if field.name.lower() == name.lower() and field.value:
                    return field.value
        return None

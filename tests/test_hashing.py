"""Tests for vaultsync.services.hashing."""

import pytest

from conftest import make_item
from vaultsync.schemas.vault_item import ItemType
from vaultsync.services.hashing import combined_hash, content_hash, item_hash, quick_hash


def _base(**overrides):
    params = {"username": "u", "password": "p", "notes": "n", "fields": {"port": "5432"}}
    params.update(overrides)
    return make_item(**params)


class TestContentHash:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"name": "other"},
            {"username": "u2"},
            {"password": "p2"},
            {"notes": "n2"},
            {"fields": {"port": "6543"}},
            {"fields": {"port": "5432", "secret-name": "renamed"}},
            {"fields": {"port": "5432", "ignore-field": "port"}},
            {"namespaces": "staging"},
            {"type": ItemType.SECURE_NOTE},
        ],
    )
    def test_every_extractor_input_changes_hash(self, overrides):
        assert content_hash(_base()) != content_hash(_base(**overrides))

    def test_ssh_payload_changes_hash(self):
        a = make_item(type=ItemType.SSH_KEY, sshKey={"privateKey": "a"})
        b = make_item(type=ItemType.SSH_KEY, sshKey={"privateKey": "b"})
        assert content_hash(a) != content_hash(b)

    def test_card_payload_changes_hash(self):
        a = make_item(type=ItemType.CARD, card={"number": "4111"})
        b = make_item(type=ItemType.CARD, card={"number": "4222"})
        assert content_hash(a) != content_hash(b)

    def test_field_order_does_not_matter(self):
        a = make_item(fields={"a": "1", "b": "2"})
        b = make_item(fields={"b": "2", "a": "1"})
        assert content_hash(a) == content_hash(b)

    def test_stable(self):
        assert content_hash(_base()) == content_hash(_base())


class TestItemHash:
    def test_revision_changes_hash(self):
        assert item_hash(_base()) != item_hash(_base(revision="2024-02-01T00:00:00Z"))

    def test_namespace_order_does_not_matter(self):
        assert item_hash(_base(namespaces="a,b")) == item_hash(_base(namespaces="b,a"))


class TestCombinedHash:
    def test_independent_of_item_order(self):
        first = make_item("1", password="a")
        second = make_item("2", password="b")
        assert combined_hash([first, second]) == combined_hash([second, first])

    def test_single_item_is_its_item_hash(self):
        item = _base()
        assert combined_hash([item]) == item_hash(item)


class TestQuickHash:
    def test_independent_of_item_order(self):
        items = [make_item("1"), make_item("2")]
        assert quick_hash(items) == quick_hash(list(reversed(items)))

    def test_detects_added_item(self):
        items = [make_item("1")]
        assert quick_hash(items) != quick_hash([*items, make_item("2")])

    def test_detects_content_change_without_revision_change(self):
        before = [make_item("1", password="a")]
        after = [make_item("1", password="b")]
        assert quick_hash(before) != quick_hash(after)

    def test_empty_vault(self):
        assert quick_hash([]) == quick_hash([])

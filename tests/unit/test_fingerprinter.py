"""
Unit tests for change fingerprinting and attribute schemas.
"""

import hashlib

import pytest
from pydantic import ValidationError

from histovault.core.errors import KeyDerivationError
from histovault.core.hashing import ChangeFingerprinter
from histovault.core.schema import AttributeSchema


@pytest.fixture
def schema():
    return AttributeSchema(name="company_details", version=1, attributes=("name", "city"))


@pytest.mark.unit
class TestChangeFingerprinter:
    """Tests for ChangeFingerprinter"""

    def test_fingerprint_follows_schema_order(self, schema):
        fingerprinter = ChangeFingerprinter(schema)
        expected = hashlib.sha256("Acme|Utrecht".encode("utf-8")).hexdigest()
        assert fingerprinter.fingerprint({"city": "Utrecht", "name": "Acme"}) == expected

    def test_missing_attribute_is_null(self, schema):
        fingerprinter = ChangeFingerprinter(schema)
        assert fingerprinter.fingerprint({"name": "Acme"}) == fingerprinter.fingerprint({"name": "Acme", "city": None})

    def test_extra_keys_ignored(self, schema):
        fingerprinter = ChangeFingerprinter(schema)
        assert fingerprinter.fingerprint({"name": "Acme", "city": "Utrecht", "company_id": 1}) == \
            fingerprinter.fingerprint({"name": "Acme", "city": "Utrecht"})

    def test_reordered_schema_changes_hash(self, schema):
        payload = {"name": "Acme", "city": "Utrecht"}
        reordered = AttributeSchema(name="company_details", version=2, attributes=("city", "name"))
        assert ChangeFingerprinter(schema).fingerprint(payload) != ChangeFingerprinter(reordered).fingerprint(payload)

    def test_changed_value_changes_hash(self, schema):
        fingerprinter = ChangeFingerprinter(schema)
        assert fingerprinter.fingerprint({"name": "X"}) != fingerprinter.fingerprint({"name": "Y"})

    def test_project(self, schema):
        projected = ChangeFingerprinter(schema).project({"company_id": 1, "city": "Delft"})
        assert projected == {"name": None, "city": "Delft"}
        assert list(projected) == ["name", "city"]

    def test_unrepresentable_attribute(self, schema):
        with pytest.raises(KeyDerivationError) as exc_info:
            ChangeFingerprinter(schema).fingerprint({"name": object()})
        assert exc_info.value.field_name == "name"


@pytest.mark.unit
class TestAttributeSchema:
    """Tests for AttributeSchema"""

    def test_duplicate_attributes_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            AttributeSchema(name="s", attributes=("a", "b", "a"))
        assert "duplicate" in str(exc_info.value)

    def test_empty_attributes_rejected(self):
        with pytest.raises(ValidationError):
            AttributeSchema(name="s", attributes=())

    def test_frozen(self, schema):
        with pytest.raises(ValidationError):
            schema.version = 2

    def test_compare_identical(self, schema):
        diff = schema.compare(schema)
        assert diff == {"added": [], "removed": [], "reordered": False, "breaking": False}

    def test_compare_added_and_removed(self, schema):
        newer = AttributeSchema(name="company_details", version=2, attributes=("name", "country"))
        diff = schema.compare(newer)
        assert diff["added"] == ["country"]
        assert diff["removed"] == ["city"]
        assert diff["breaking"] is True

    def test_compare_reordered(self, schema):
        newer = AttributeSchema(name="company_details", version=2, attributes=("city", "name"))
        diff = schema.compare(newer)
        assert diff["reordered"] is True
        assert diff["breaking"] is True

"""
Unit tests for extension identifier validation.
"""

import pytest

from service_crx.app.domain.errors import InvalidIdentifier
from service_crx.app.domain.identifiers import is_valid_extension_id, normalize_extension_id


VALID_ID = "nmmhkkegccagdldgiimedpiccmgmieda"


class TestNormalizeExtensionId:
    """Test cases for normalize_extension_id."""

    def test_lowercase_id_accepted(self):
        """Test lowercase id accepted."""
        assert normalize_extension_id(VALID_ID) == VALID_ID

    @pytest.mark.parametrize("value", [
        VALID_ID.upper(),
        "NmMhKkEgCcAgDlDgIiMeDpIcCmGmIeDa",
        "A" * 32,
    ])
    def test_mixed_case_normalized_to_lowercase(self, value):
        """Test mixed-case id normalized."""
        assert normalize_extension_id(value) == value.lower()

    @pytest.mark.parametrize("value", [
        "",
        "a" * 31,
        "a" * 33,
        "a" * 31 + "1",
        "a" * 31 + "-",
        "a" * 16 + " " + "a" * 15,
        "a" * 31 + "é",
        "a" * 32 + "\n",
        "../" + "a" * 29,
    ])
    def test_invalid_values_rejected(self, value):
        """Test malformed ids rejected."""
        with pytest.raises(InvalidIdentifier) as exc_info:
            normalize_extension_id(value)

        assert exc_info.value.code == "INVALID_IDENTIFIER"
        assert exc_info.value.status_code == 400

    def test_non_string_rejected(self):
        """Test non-string id rejected."""
        with pytest.raises(InvalidIdentifier):
            normalize_extension_id(None)

    def test_is_valid_extension_id(self):
        """Test boolean validity check."""
        assert is_valid_extension_id(VALID_ID) is True
        assert is_valid_extension_id("not-an-id") is False

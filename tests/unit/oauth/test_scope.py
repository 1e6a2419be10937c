"""Tests for scope parsing and checks."""

import pytest

from oauthkeeper.oauth.scope import is_subset, parse_scope, validate_scope, verify_scope


class TestParseScope:

    @pytest.mark.parametrize("scope,expected", [
        (None, []),
        ("", []),
        ("rw", ["rw"]),
        ("rw r", ["rw", "r"]),
        ("  rw   r ", ["rw", "r"]),
    ])
    def test_parse(self, scope, expected):
        assert parse_scope(scope) == expected


class TestValidateScope:
    """Requested scope against a client's allowed list."""

    def test_all_tokens_allowed(self):
        assert validate_scope("rw r", ["rw", "r"]) == "rw r"

    def test_one_token_not_allowed(self):
        assert validate_scope("rw admin", ["rw", "r"]) is None

    def test_nothing_requested(self):
        assert validate_scope(None, ["rw"]) is None
        assert validate_scope("", ["rw"]) is None

    def test_unrestricted_client_gets_no_scope(self):
        assert validate_scope("anything", None) is None

    def test_empty_allowed_list(self):
        assert validate_scope("r", []) is None


class TestVerifyScope:
    """Granted scope against a required scope."""

    def test_contains_required(self):
        assert verify_scope("rw r", "r")
        assert verify_scope("rw r", "r rw")

    def test_missing_required(self):
        assert not verify_scope("r", "rw")

    def test_empty_grant_fails(self):
        assert not verify_scope(None, "r")
        assert not verify_scope("", None)

    def test_nothing_required(self):
        assert verify_scope("r", None)


class TestIsSubset:

    def test_subset(self):
        assert is_subset("r", "rw r")
        assert is_subset(None, "rw")

    def test_not_subset(self):
        assert not is_subset("admin", "rw r")
        assert not is_subset("r", None)

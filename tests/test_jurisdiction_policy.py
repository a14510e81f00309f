"""Tests for jurisdiction language policies."""

import pytest

from app.consent.jurisdiction import (
    JURISDICTION_POLICIES,
    UnknownJurisdictionError,
    get_active_policy,
    get_jurisdiction_policy,
)


class TestJurisdictionPolicy:
    """Tests for JurisdictionPolicy."""

    def test_quebec_is_strict_french_only(self) -> None:
        policy = get_jurisdiction_policy("CA-QC")

        assert policy.strict is True
        assert policy.allows("fr-CA")
        assert not policy.allows("en-CA")

    def test_strict_policy_ignores_patient_preference(self) -> None:
        """A strict jurisdiction never falls back to the preferred language."""
        policy = get_jurisdiction_policy("CA-QC")

        assert policy.select_language("en-CA") == "fr-CA"
        assert policy.select_language(None) == "fr-CA"

    @pytest.mark.parametrize("code", ["CA-ON", "CA-BC", "CA-AB"])
    def test_bilingual_provinces_accept_both_languages(self, code: str) -> None:
        policy = get_jurisdiction_policy(code)

        assert policy.allows("en-CA")
        assert policy.allows("fr-CA")
        assert policy.strict is False

    def test_non_strict_policy_honours_allowed_preference(self) -> None:
        policy = get_jurisdiction_policy("CA-ON")

        assert policy.select_language("fr-CA") == "fr-CA"
        assert policy.select_language("es-MX") == "en-CA"
        assert policy.select_language(None) == "en-CA"

    def test_unknown_language_is_never_allowed(self) -> None:
        for policy in JURISDICTION_POLICIES.values():
            assert not policy.allows(None)
            assert not policy.allows("de-DE")

    def test_lookup_is_case_insensitive(self) -> None:
        assert get_jurisdiction_policy("ca-qc").code == "CA-QC"

    def test_unknown_jurisdiction_raises(self) -> None:
        with pytest.raises(UnknownJurisdictionError):
            get_jurisdiction_policy("US-NY")

    def test_active_policy_follows_settings(self, monkeypatch) -> None:
        from app.core.config import settings

        monkeypatch.setattr(settings, "consent_jurisdiction", "CA-QC")

        assert get_active_policy().code == "CA-QC"

"""Jurisdiction language policy for consent texts.

Each jurisdiction lists the consent-text languages that are legally
acceptable there. A strict jurisdiction accepts exactly one language
variant and never falls back to the patient's preference.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class JurisdictionPolicy:
    """Language policy for one clinical/legal region.

    Attributes:
        code: Jurisdiction code (e.g. "CA-QC")
        name: Display name
        allowed_languages: Consent-text languages accepted in the region
        default_language: Language used when no preference applies
        strict: Whether only the default language may ever be presented
    """

    code: str
    name: str
    allowed_languages: frozenset[str]
    default_language: str
    strict: bool = False

    def allows(self, language: str | None) -> bool:
        """Check if a consent-text language is accepted here."""
        return language is not None and language in self.allowed_languages

    def select_language(self, preferred: str | None = None) -> str:
        """Pick the language to present to a patient.

        Examples:
            >>> get_jurisdiction_policy("CA-QC").select_language("en-CA")
            'fr-CA'
            >>> get_jurisdiction_policy("CA-ON").select_language("fr-CA")
            'fr-CA'
        """
        if not self.strict and self.allows(preferred):
            return preferred
        return self.default_language


class UnknownJurisdictionError(ValueError):
    """Raised when a jurisdiction code has no configured policy."""

    pass


JURISDICTION_POLICIES: dict[str, JurisdictionPolicy] = {
    "CA-QC": JurisdictionPolicy(
        code="CA-QC",
        name="Quebec",
        allowed_languages=frozenset({"fr-CA"}),
        default_language="fr-CA",
        strict=True,
    ),
    "CA-ON": JurisdictionPolicy(
        code="CA-ON",
        name="Ontario",
        allowed_languages=frozenset({"en-CA", "fr-CA"}),
        default_language="en-CA",
    ),
    "CA-BC": JurisdictionPolicy(
        code="CA-BC",
        name="British Columbia",
        allowed_languages=frozenset({"en-CA", "fr-CA"}),
        default_language="en-CA",
    ),
    "CA-AB": JurisdictionPolicy(
        code="CA-AB",
        name="Alberta",
        allowed_languages=frozenset({"en-CA", "fr-CA"}),
        default_language="en-CA",
    ),
}


def get_jurisdiction_policy(code: str) -> JurisdictionPolicy:
    """Look up the policy for a jurisdiction code.

    Args:
        code: Jurisdiction code, case-insensitive

    Returns:
        The configured JurisdictionPolicy

    Raises:
        UnknownJurisdictionError: If the code is not configured
    """
    try:
        return JURISDICTION_POLICIES[code.upper()]
    except KeyError:
        raise UnknownJurisdictionError(f"Unknown jurisdiction: {code}") from None


def get_active_policy() -> JurisdictionPolicy:
    """Return the policy selected by the ``consent_jurisdiction`` setting."""
    from app.core.config import settings

    return get_jurisdiction_policy(settings.consent_jurisdiction)

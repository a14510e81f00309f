"""Consent validity gate.

``is_valid`` is the only place that decides whether consent is satisfied.
Feature gates such as "may recording start" must call it rather than
inspecting consent records themselves.
"""

from typing import Protocol

from app.consent.jurisdiction import JurisdictionPolicy
from app.consent.texts import ConsentText, ConsentTextRegistry, consent_text_registry
from app.core.errors import InvalidJurisdictionTextError
from app.models.consent import ConsentStatus


class ConsentLike(Protocol):
    """Anything carrying a consent status and a text version."""

    status: str
    text_version: str


def is_valid(
    record: ConsentLike | None,
    jurisdiction: JurisdictionPolicy,
    registry: ConsentTextRegistry = consent_text_registry,
) -> bool:
    """Decide whether a consent record is valid for a jurisdiction.

    A record is valid only when it is granted and its text version is
    written in a language the jurisdiction accepts. Unknown text versions
    are never valid.

    Args:
        record: Latest consent decision for the patient, or None
        jurisdiction: Policy to validate against
        registry: Consent text registry used to resolve languages

    Returns:
        True if consent is satisfied
    """
    if record is None:
        return False
    if record.status != ConsentStatus.GRANTED:
        return False
    return jurisdiction.allows(registry.language_of(record.text_version))


def require_permitted_text(
    text_version: str,
    jurisdiction: JurisdictionPolicy,
    registry: ConsentTextRegistry = consent_text_registry,
) -> ConsentText:
    """Resolve a text version, rejecting texts not accepted in the jurisdiction.

    Raises:
        InvalidJurisdictionTextError: If the text is unknown or its
            language is not allowed
    """
    text = registry.resolve(text_version)
    if text is None or not jurisdiction.allows(text.language):
        raise InvalidJurisdictionTextError(text_version, jurisdiction.code)
    return text


def select_consent_text(
    jurisdiction: JurisdictionPolicy,
    version: str,
    preferred_language: str | None = None,
    registry: ConsentTextRegistry = consent_text_registry,
) -> ConsentText:
    """Choose the consent text to present under a jurisdiction.

    Raises:
        InvalidJurisdictionTextError: If no permitted text is published
            for the selected language
    """
    language = jurisdiction.select_language(preferred_language)
    return require_permitted_text(f"{version}-{language}", jurisdiction, registry)

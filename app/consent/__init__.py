"""Consent policy, validation and status polling."""

from app.consent.jurisdiction import JurisdictionPolicy, get_active_policy, get_jurisdiction_policy
from app.consent.poller import ConsentStatusPoller, PollSnapshot, PollState
from app.consent.texts import ConsentText, ConsentTextRegistry, consent_text_registry
from app.consent.validator import is_valid, require_permitted_text, select_consent_text

__all__ = [
    "ConsentStatusPoller",
    "ConsentText",
    "ConsentTextRegistry",
    "JurisdictionPolicy",
    "PollSnapshot",
    "PollState",
    "consent_text_registry",
    "get_active_policy",
    "get_jurisdiction_policy",
    "is_valid",
    "require_permitted_text",
    "select_consent_text",
]

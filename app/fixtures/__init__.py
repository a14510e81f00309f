"""Static message content for the consent service."""

from app.fixtures.message_templates import CONSENT_REQUEST_TEMPLATES, render_consent_request

__all__ = ["CONSENT_REQUEST_TEMPLATES", "render_consent_request"]

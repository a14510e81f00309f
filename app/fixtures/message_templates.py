"""Consent request message templates.

Templates use ``{{variable}}`` placeholders. SMS bodies stay short enough
for two segments including the consent link.
"""

from app.models.messaging import MessageChannel

CONSENT_REQUEST_TEMPLATES: dict[tuple[MessageChannel, str], dict[str, str | None]] = {
    (MessageChannel.SMS, "en-CA"): {
        "subject": None,
        "body": (
            "Hi {{patient_first_name}}, {{clinician_name}} at {{clinic_name}} "
            "is asking for your consent to use AI-assisted documentation during "
            "your care. Review and respond: {{consent_url}}"
        ),
    },
    (MessageChannel.SMS, "fr-CA"): {
        "subject": None,
        "body": (
            "Bonjour {{patient_first_name}}, {{clinician_name}} de {{clinic_name}} "
            "demande votre consentement à l'utilisation de la documentation "
            "assistée par l'IA. Consultez et répondez : {{consent_url}}"
        ),
    },
    (MessageChannel.EMAIL, "en-CA"): {
        "subject": "Your consent is requested by {{clinic_name}}",
        "body": (
            "Hi {{patient_first_name}},\n\n"
            "{{clinician_name}} at {{clinic_name}} would like to use an "
            "AI-assisted documentation tool during your care.\n\n"
            "Please review the consent information and record your decision:\n"
            "{{consent_url}}\n\n"
            "This link can be used once and expires on {{expires_on}}."
        ),
    },
    (MessageChannel.EMAIL, "fr-CA"): {
        "subject": "{{clinic_name}} sollicite votre consentement",
        "body": (
            "Bonjour {{patient_first_name}},\n\n"
            "{{clinician_name}} de {{clinic_name}} souhaite utiliser un outil "
            "de documentation assisté par l'IA pendant vos soins.\n\n"
            "Veuillez consulter l'information et indiquer votre décision :\n"
            "{{consent_url}}\n\n"
            "Ce lien ne peut être utilisé qu'une seule fois et expire le {{expires_on}}."
        ),
    },
}


def render_consent_request(
    channel: MessageChannel,
    language: str,
    context: dict,
) -> tuple[str | None, str]:
    """Render a consent request message.

    Falls back to the en-CA template when no template exists for the
    language. Returns (subject, body).
    """
    template = CONSENT_REQUEST_TEMPLATES.get(
        (channel, language),
        CONSENT_REQUEST_TEMPLATES[(channel, "en-CA")],
    )
    subject = template["subject"]
    body = template["body"]

    for key, value in context.items():
        placeholder = f"{{{{{key}}}}}"
        if subject:
            subject = subject.replace(placeholder, str(value))
        body = body.replace(placeholder, str(value))

    return subject, body

"""Versioned consent legal-text registry.

Text versions are identified as ``{version}-{language}``, e.g.
``1.0.0-fr-CA``. The registry maps each identifier to the language it is
written in and its literal content.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ConsentText:
    """One published consent text."""

    version: str
    language: str
    title: str
    body: str

    @property
    def text_version(self) -> str:
        """Full identifier stored on consent records."""
        return f"{self.version}-{self.language}"


class ConsentTextRegistry:
    """In-memory store of published consent texts."""

    def __init__(self, texts: list[ConsentText] | None = None) -> None:
        self._texts: dict[str, ConsentText] = {}
        for text in texts or []:
            self.register(text)

    def register(self, text: ConsentText) -> None:
        """Publish a consent text. Published texts are never replaced."""
        if text.text_version in self._texts:
            raise ValueError(f"Consent text {text.text_version} already registered")
        self._texts[text.text_version] = text

    def resolve(self, text_version: str) -> ConsentText | None:
        """Resolve a text-version identifier to its text."""
        return self._texts.get(text_version)

    def language_of(self, text_version: str | None) -> str | None:
        """Return the language of a text version, or None if unknown."""
        if text_version is None:
            return None
        text = self.resolve(text_version)
        return text.language if text else None

    def get(self, version: str, language: str) -> ConsentText | None:
        """Find a text by version and language."""
        return self.resolve(f"{version}-{language}")

    def versions(self) -> list[str]:
        """List all registered text-version identifiers."""
        return sorted(self._texts)


_EN_CA_BODY = (
    "Your clinician would like to use an AI-assisted documentation tool during "
    "today's visit. With your permission, the conversation is recorded and "
    "transcribed so a draft clinical note can be prepared. Your clinician "
    "reviews every note before it is added to your record.\n\n"
    "Recordings are processed only to prepare your clinical documentation and "
    "are handled under applicable Canadian privacy law (PHIPA/PIPEDA).\n\n"
    "Your participation is voluntary. Declining will not affect your care, and "
    "you may withdraw your consent at any time by telling your clinic."
)

_FR_CA_BODY = (
    "Votre clinicien souhaite utiliser un outil de documentation assisté par "
    "l'IA pendant la visite d'aujourd'hui. Avec votre permission, la "
    "conversation est enregistrée et transcrite afin de préparer une ébauche de "
    "note clinique. Votre clinicien révise chaque note avant qu'elle soit "
    "ajoutée à votre dossier.\n\n"
    "Les enregistrements servent uniquement à préparer votre documentation "
    "clinique et sont traités conformément aux lois canadiennes applicables en "
    "matière de protection des renseignements personnels.\n\n"
    "Votre participation est volontaire. Un refus n'aura aucune incidence sur "
    "vos soins, et vous pouvez retirer votre consentement en tout temps en "
    "avisant votre clinique."
)

DEFAULT_TEXTS = [
    ConsentText(
        version="1.0.0",
        language="en-CA",
        title="Consent to AI-assisted clinical documentation",
        body=_EN_CA_BODY,
    ),
    ConsentText(
        version="1.0.0",
        language="fr-CA",
        title="Consentement à la documentation clinique assistée par l'IA",
        body=_FR_CA_BODY,
    ),
]

consent_text_registry = ConsentTextRegistry(DEFAULT_TEXTS)

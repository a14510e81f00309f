"""Consent error taxonomy.

Token-layer errors carry the public error code and a user-actionable message
so the portal can tell a patient whether to ask for a new link or whether
their decision is already on file.
"""


class ConsentError(Exception):
    """Base class for consent lifecycle errors."""

    pass


class ConsentTokenError(ConsentError):
    """Raised when a consent token cannot be consumed."""

    code = "INTERNAL_ERROR"
    status_code = 500
    message = (
        "We could not record your decision. "
        "Please try again or contact your clinic."
    )

    def __init__(self, token_id: str | None = None, patient_id: str | None = None) -> None:
        super().__init__(self.message)
        self.token_id = token_id
        self.patient_id = patient_id


class TokenNotFoundError(ConsentTokenError):
    """Raised when no token matches the submitted value."""

    code = "INVALID_TOKEN"
    status_code = 404
    message = "Invalid consent link. Please request a new one from your clinic."


class TokenExpiredError(ConsentTokenError):
    """Raised when the token validity window has passed."""

    code = "TOKEN_EXPIRED"
    status_code = 410
    message = "This consent link has expired. Please request a new one from your clinic."


class TokenAlreadyUsedError(ConsentTokenError):
    """Raised when the token has already recorded a decision."""

    code = "CONSENT_ALREADY_RECORDED"
    status_code = 409
    message = (
        "This consent has already been recorded. "
        "The link can only be used once."
    )


class InvalidJurisdictionTextError(ConsentError):
    """Raised when a consent text version is not permitted in a jurisdiction."""

    def __init__(self, text_version: str, jurisdiction: str) -> None:
        super().__init__(
            f"Consent text {text_version!r} is not permitted in {jurisdiction}"
        )
        self.text_version = text_version
        self.jurisdiction = jurisdiction


class VerbalConsentError(ConsentError):
    """Raised when a verbal consent submission is incomplete."""

    pass


class ConsentStatusError(ConsentError):
    """Base class for status-check transport failures."""

    pass


class ConsentNetworkError(ConsentStatusError):
    """Raised when the status authority could not be reached."""

    pass


class ConsentPermissionDeniedError(ConsentStatusError):
    """Raised when the status authority refused the caller."""

    pass


class ConsentPollTimeoutError(ConsentStatusError):
    """Raised when a poll reached its attempt ceiling without a grant."""

    def __init__(self, patient_id: str, attempts: int) -> None:
        super().__init__(
            f"No consent for patient {patient_id} after {attempts} attempts"
        )
        self.patient_id = patient_id
        self.attempts = attempts

"""HTTP client for the consent status endpoint."""

from collections.abc import Callable

import httpx
from pydantic import ValidationError

from app.core.errors import ConsentNetworkError, ConsentPermissionDeniedError
from app.schemas.consent import ConsentStatusResponse

STATUS_PATH = "/api/v1/consent/status"


class HttpConsentStatusAuthority:
    """Consent status authority backed by the service's status endpoint.

    Authenticates as the clinician; the patient id is sent in the body
    and never taken from a patient session.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str | Callable[[], str],
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the authority.

        Args:
            base_url: Base URL of the consent service
            access_token: Clinician bearer token, or a callable returning one
            timeout: Request timeout in seconds
            client: Pre-configured client (tests, connection sharing)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._access_token = access_token
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={"Accept": "application/json"},
            )
        return self._client

    def _bearer(self) -> str:
        token = self._access_token() if callable(self._access_token) else self._access_token
        return f"Bearer {token}"

    async def check(self, patient_id: str) -> ConsentStatusResponse:
        """Ask the service for a patient's current consent status.

        Raises:
            ConsentPermissionDeniedError: On 401, 403 or 404
            ConsentNetworkError: On transport failure, timeout, any other
                non-2xx status, or an unreadable body
        """
        client = await self._get_client()
        try:
            response = await client.post(
                STATUS_PATH,
                json={"patientId": patient_id},
                headers={"Authorization": self._bearer()},
            )
        except httpx.TimeoutException as e:
            raise ConsentNetworkError(f"Consent status request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ConsentNetworkError(f"Consent status request failed: {e}") from e

        if response.status_code in (401, 403, 404):
            raise ConsentPermissionDeniedError(
                f"Consent status denied: {response.status_code}"
            )
        if not response.is_success:
            # 429 and 5xx clear up on their own; anything else is retried too
            raise ConsentNetworkError(
                f"Consent status service error: {response.status_code}"
            )

        try:
            return ConsentStatusResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ConsentNetworkError(f"Malformed consent status response: {e}") from e

    async def close(self) -> None:
        """Close HTTP client if this authority created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

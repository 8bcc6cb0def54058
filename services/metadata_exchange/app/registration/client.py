"""Crossref deposit API client."""

from dataclasses import dataclass
from typing import Any

import httpx

from services.metadata_exchange.app.config import UNCONFIGURED_DOI_PREFIX, Settings
from services.metadata_exchange.app.core.clock import Clock, SystemClock
from services.metadata_exchange.app.core.normalizers import is_valid_doi
from services.metadata_exchange.app.registration.errors import FailureCause, TransientDepositError
from services.metadata_exchange.app.registration.metadata import JournalArticleMetadata
from services.metadata_exchange.app.registration.retry import RetryPolicy, parse_retry_after
from shared.utils.logging import get_logger
from shared.utils.metrics import create_counter

logger = get_logger(__name__)

DEPOSIT_ATTEMPTS = create_counter(
    "exchange_deposit_attempts_total",
    "Deposit HTTP attempts by response class",
    ["result"],
)

UNKNOWN_TRACKING_ID = "unknown"


@dataclass(frozen=True)
class DepositResult:
    """Outcome of a deposit submission.

    Callers branch on ``success`` and ``cause``; ``reason`` is for humans.
    """

    success: bool
    tracking_id: str | None = None
    cause: FailureCause | None = None
    reason: str | None = None
    attempts: int = 0

    @property
    def is_configuration_error(self) -> bool:
        """Whether the failure needs operator action on credentials or prefix."""
        return self.cause is not None and self.cause.is_configuration_error

    @classmethod
    def ok(cls, tracking_id: str, attempts: int, reason: str | None = None) -> "DepositResult":
        return cls(success=True, tracking_id=tracking_id, reason=reason, attempts=attempts)

    @classmethod
    def failure(cls, cause: FailureCause, reason: str, attempts: int = 0) -> "DepositResult":
        return cls(success=False, cause=cause, reason=reason, attempts=attempts)


@dataclass(frozen=True)
class DepositStatus:
    """Processing status of an earlier deposit."""

    status: str
    message: str | None = None


class RegistrationClient:
    """Submits deposit metadata to Crossref with bounded retries."""

    def __init__(
        self,
        settings: Settings,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ):
        """Initialize client.

        Args:
            settings: Service settings holding deposit credentials
            retry_policy: Retry policy; built from settings when omitted
            http_client: Shared HTTP client; one is created lazily when omitted
            clock: Time source for resolving HTTP-date Retry-After values
        """
        self.settings = settings
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.registration_max_attempts,
            backoff_base_seconds=settings.registration_backoff_base_seconds,
            backoff_max_seconds=settings.registration_backoff_max_seconds,
            attempt_timeout_seconds=settings.registration_attempt_timeout_seconds,
        )
        self.clock = clock or SystemClock()
        self._client = http_client
        self._owns_client = http_client is None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.registration_attempt_timeout_seconds),
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _get_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": self.settings.crossref_user_agent,
        }

    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.settings.crossref_username, self.settings.crossref_password)

    def _configuration_problem(self) -> str | None:
        if not self.settings.crossref_username or not self.settings.crossref_password:
            return "Crossref credentials not configured"
        if self.settings.crossref_doi_prefix in ("", UNCONFIGURED_DOI_PREFIX):
            return "Crossref DOI prefix not configured"
        if not self.settings.doi_prefix_valid:
            return f"Crossref DOI prefix is malformed: {self.settings.crossref_doi_prefix}"
        return None

    async def deposit(self, doi: str, metadata: JournalArticleMetadata) -> DepositResult:
        """Submit one article's metadata.

        Args:
            doi: DOI being registered (for logging)
            metadata: Deposit metadata carrying the same DOI

        Returns:
            Tagged deposit result; never raises for HTTP or network failures
        """
        problem = self._configuration_problem()
        if problem:
            logger.warning("deposit_not_configured", doi=doi, reason=problem)
            return DepositResult.failure(FailureCause.NOT_CONFIGURED, problem)
        if not is_valid_doi(doi):
            logger.warning("deposit_malformed_doi", doi=doi)
            return DepositResult.failure(FailureCause.REJECTED, f"Malformed DOI: {doi}")

        body = {
            "owner-prefix": self.settings.crossref_doi_prefix,
            "items": [metadata.to_payload()],
        }
        logger.info("deposit_submitting", doi=doi, url=self.settings.crossref_api_url)

        try:
            result = await self.retry_policy.run(lambda attempt: self._post(body, attempt))
        except TransientDepositError as e:
            logger.error(
                "deposit_retries_exhausted",
                doi=doi,
                cause=e.cause.value,
                reason=e.reason,
                attempts=e.attempts,
            )
            return DepositResult.failure(
                e.cause,
                f"{e.reason} (after {e.attempts} attempts)",
                attempts=e.attempts,
            )

        if result.success:
            logger.info(
                "deposit_accepted",
                doi=doi,
                tracking_id=result.tracking_id,
                attempts=result.attempts,
            )
        else:
            logger.warning(
                "deposit_rejected",
                doi=doi,
                cause=result.cause.value if result.cause else None,
                reason=result.reason,
                attempts=result.attempts,
            )
        return result

    async def _post(self, body: dict[str, Any], attempt: int) -> DepositResult:
        """One deposit attempt; raises TransientDepositError for retryable failures."""
        client = await self.get_client()
        try:
            response = await client.post(
                self.settings.crossref_api_url,
                json=body,
                headers=self._get_headers(),
                auth=self._auth(),
            )
        except httpx.TransportError as e:
            DEPOSIT_ATTEMPTS.labels(result="network_error").inc()
            raise TransientDepositError(
                FailureCause.NETWORK_ERROR,
                f"Network error: {e.__class__.__name__}: {e}",
            ) from e

        status = response.status_code
        logger.debug("deposit_attempt_response", attempt=attempt, status=status)

        if status == 429:
            DEPOSIT_ATTEMPTS.labels(result="rate_limited").inc()
            retry_after = parse_retry_after(response.headers.get("Retry-After"), self.clock.now())
            raise TransientDepositError(
                FailureCause.RATE_LIMITED,
                "Crossref rate limit exceeded",
                retry_after=retry_after,
            )
        if status == 401:
            DEPOSIT_ATTEMPTS.labels(result="credentials").inc()
            return DepositResult.failure(
                FailureCause.CREDENTIALS,
                "Crossref authentication failed. Check username and password.",
                attempts=attempt,
            )
        if status == 403:
            DEPOSIT_ATTEMPTS.labels(result="ownership").inc()
            return DepositResult.failure(
                FailureCause.OWNERSHIP,
                "Crossref access forbidden. Check DOI prefix ownership.",
                attempts=attempt,
            )
        if status >= 500:
            DEPOSIT_ATTEMPTS.labels(result="server_error").inc()
            raise TransientDepositError(
                FailureCause.SERVER_ERROR,
                f"Crossref server error: {status}",
            )

        result = self._interpret(response, attempt)
        DEPOSIT_ATTEMPTS.labels(result="accepted" if result.success else "rejected").inc()
        return result

    def _interpret(self, response: httpx.Response, attempt: int) -> DepositResult:
        """Map a non-retryable response to a result."""
        try:
            data = response.json()
        except ValueError:
            if response.is_success:
                return DepositResult.ok(
                    response.text[:50], attempts=attempt, reason="DOI deposit accepted"
                )
            return DepositResult.failure(
                FailureCause.REJECTED,
                f"Invalid response: {response.text[:200]}",
                attempts=attempt,
            )

        body = data if isinstance(data, dict) else {}
        if response.is_success or body.get("status") == "ok":
            message = body.get("message")
            message = message if isinstance(message, dict) else {}
            tracking_id = (
                message.get("batch-id") or message.get("submission-id") or UNKNOWN_TRACKING_ID
            )
            return DepositResult.ok(
                str(tracking_id),
                attempts=attempt,
                reason=message.get("status") or "Deposit accepted",
            )

        return DepositResult.failure(
            FailureCause.REJECTED,
            f"Crossref rejected the deposit ({response.status_code}): {response.text[:200]}",
            attempts=attempt,
        )

    async def check_deposit_status(self, tracking_id: str) -> DepositStatus:
        """Look up the processing status of an earlier deposit.

        Args:
            tracking_id: Batch or submission id returned by ``deposit``

        Returns:
            Reported status; ``unknown`` or ``error`` when it cannot be read
        """
        client = await self.get_client()
        url = f"{self.settings.crossref_api_url.rstrip('/')}/{tracking_id}"
        try:
            response = await client.get(url, headers=self._get_headers(), auth=self._auth())
        except httpx.TransportError as e:
            logger.warning("deposit_status_failed", tracking_id=tracking_id, error=str(e))
            return DepositStatus(status="error", message=str(e))

        if not response.is_success:
            return DepositStatus(status="unknown", message=f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            return DepositStatus(status="unknown", message=response.text[:200])
        if not isinstance(data, dict):
            return DepositStatus(status="unknown")

        message = data.get("message")
        if isinstance(message, dict):
            message = message.get("status")
        return DepositStatus(
            status=str(data.get("status") or "unknown"),
            message=str(message) if message is not None else None,
        )

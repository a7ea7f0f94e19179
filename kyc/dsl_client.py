"""Client for the remote DSL service that parses, serializes and validates cases."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx

from kyc.domain import KycCase
from kyc.errors import BindError, KycError, ParseError, ValidationError

logger = logging.getLogger(__name__)

# =============================================================================
# DSL Service Configuration
# =============================================================================
# The service owns the textual grammar. It exposes three JSON endpoints:
#
#   POST /v1/parse      {"text": str}                  -> {"cases": [case...]}
#   POST /v1/serialize  {"cases": [case...]}           -> {"text": str}
#   POST /v1/validate   {"case": case, "schema_ref": s} -> {"valid": bool,
#                                                          "errors": [str...]}
#
# A "case" object is the dict form produced by KycCase.to_dict(). Parse
# failures come back as 4xx with {"error": str}.
# =============================================================================

PARSE_PATH = "/v1/parse"
SERIALIZE_PATH = "/v1/serialize"
VALIDATE_PATH = "/v1/validate"


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.RequestError)


def _describe_failure(error: Exception) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code}"
    return str(error) or type(error).__name__


def _error_detail(response: httpx.Response) -> str:
    """Pull the service's error message out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}"


class DslServiceClient:
    """Async client for the DSL parse/serialize/validate service.

    Implements the ``kyc.codec.CaseCodec`` protocol.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the DSL service client.

        Args:
            base_url: Service base URL. Defaults to ``settings.dsl_service_url``.
            timeout: HTTP request timeout in seconds.
            max_retries: Attempts per request before giving up.
            retry_delay: Base delay for exponential backoff, in seconds.
            transport: Optional httpx transport (used by tests).
        """
        # Import here to avoid circular imports
        from app.config import settings

        self.base_url = (base_url or settings.dsl_service_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.dsl_service_timeout
        # At least one attempt is always made
        self.max_retries = max(
            1,
            max_retries if max_retries is not None else settings.dsl_service_max_retries,
        )
        self.retry_delay = (
            retry_delay if retry_delay is not None else settings.dsl_service_retry_delay
        )
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        )

    async def _request_with_retry(
        self, client: httpx.AsyncClient, path: str, payload: dict[str, Any]
    ) -> httpx.Response:
        """POST ``payload`` to ``path``, backing off exponentially between attempts.

        Transport failures and 5xx responses are retried. A 4xx means the
        service understood the request and rejected it, so it is returned
        to the caller at once.

        Raises:
            httpx.HTTPStatusError: On a 4xx, or a 5xx on the last attempt.
            httpx.RequestError: If the last attempt cannot reach the service.
        """
        attempt = 1
        while True:
            try:
                response = await client.post(path, json=payload)
                response.raise_for_status()
                return response
            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                if not _is_retryable(e) or attempt >= self.max_retries:
                    raise
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"DSL service {path} failed ({_describe_failure(e)}), "
                    f"retrying in {delay}s (attempt {attempt}/{self.max_retries})"
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        failure: Callable[[str], KycError],
    ) -> dict[str, Any]:
        """Call an endpoint and return its JSON object body.

        Every way the call can go wrong (unreachable service, HTTP error,
        a body that is not a JSON object) is raised as ``failure(detail)``.
        """
        try:
            async with self._client() as client:
                response = await self._request_with_retry(client, path, payload)
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise failure(_error_detail(e.response)) from e
        except (httpx.RequestError, ValueError) as e:
            raise failure(str(e)) from e
        if not isinstance(body, dict):
            raise failure(f"unexpected response body from {path}")
        return body

    async def parse(self, text: str) -> list[KycCase]:
        """Parse snapshot text into cases.

        Raises:
            ParseError: If the service rejects the text or cannot be reached.
            BindError: If a returned case cannot be reconstructed.
        """
        body = await self._post(
            PARSE_PATH, {"text": text}, lambda detail: ParseError(f"parse failed: {detail}")
        )

        raw_cases = body.get("cases")
        if not isinstance(raw_cases, list):
            raise BindError("parse response has no case list")
        cases = []
        for raw in raw_cases:
            if not isinstance(raw, dict):
                raise BindError(f"parse response has a non-object case: {raw!r}")
            cases.append(KycCase.from_dict(raw))
        return cases

    async def serialize(self, cases: list[KycCase]) -> str:
        """Render cases to snapshot text.

        Raises:
            ParseError: If the service cannot render the cases.
        """
        body = await self._post(
            SERIALIZE_PATH,
            {"cases": [case.to_dict() for case in cases]},
            lambda detail: ParseError(f"serialize failed: {detail}"),
        )

        text = body.get("text")
        if not isinstance(text, str):
            raise ParseError("serialize response has no text")
        return text

    async def validate(self, case: KycCase, schema_ref: str) -> None:
        """Validate a case against ``schema_ref``.

        Raises:
            ValidationError: If the case is invalid or the service fails.
        """
        body = await self._post(
            VALIDATE_PATH,
            {"case": case.to_dict(), "schema_ref": schema_ref},
            lambda detail: ValidationError(
                f"validation failed: {detail}", case_name=case.name
            ),
        )

        if not body.get("valid", False):
            errors = body.get("errors") or ["rejected by validator"]
            raise ValidationError(
                "validation failed: " + "; ".join(str(e) for e in errors),
                case_name=case.name,
            )

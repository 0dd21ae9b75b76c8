"""Provider adapter contract and shared HTTP plumbing."""

from __future__ import annotations

import logging
from typing import Any, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from reelstudio.errors import InvalidInput, ProviderUnavailable
from reelstudio.jobs.models import Artifact, JobKind, PollOutcome, Submission

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
_NOT_INPUT_STATUSES = frozenset({401, 403, 408, 429})


class IProviderAdapter(Protocol):
    """Contract every external capability implements.

    Adapters translate the orchestrator's generic calls into one provider's
    wire protocol and map the provider's answers back onto
    ``{submitted, processing, completed, failed}``.
    """

    kind: JobKind

    @property
    def name(self) -> str:
        """Provider name identifier."""
        ...

    @property
    def is_available(self) -> bool:
        """Whether the provider is configured."""
        ...

    def validate(self, params: dict[str, Any]) -> dict[str, Any]:
        """Check and normalize request params before any external call.

        Raises:
            InvalidInput: If the params are unusable.
        """
        ...

    async def submit(self, params: dict[str, Any]) -> Submission:
        """Hand work to the provider.

        Raises:
            ProviderUnavailable: Provider unreachable or erroring.
            InvalidInput: Provider rejected the params.
        """
        ...

    async def poll(self, external_ref: str) -> PollOutcome:
        """Read the provider's current status. Never mutates provider state.

        Raises:
            ProviderUnavailable: Transient failure reading the status.
        """
        ...

    async def fetch_artifact(self, external_ref: str, result: dict[str, Any]) -> Artifact:
        """Retrieve the output of a completed job."""
        ...

    async def cancel(self, external_ref: str) -> bool:
        """Best-effort provider-side cancellation. Returns whether it was accepted."""
        ...


class _TransientStatus(Exception):
    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def _retryable(idempotent: bool):
    def predicate(exc: BaseException) -> bool:
        if isinstance(exc, _TransientStatus):
            return True
        # Nothing reached the provider, so even a submission is safe to resend
        if isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
            return True
        return idempotent and isinstance(exc, httpx.TransportError)

    return predicate


class ProviderHttpClient:
    """Thin httpx wrapper with a timeout and a small fixed retry budget.

    Idempotent requests are retried on transport errors, 408/429 and 5xx.
    Non-idempotent requests are retried only when the connection could
    not be established. Failures surface as ``ProviderUnavailable`` or,
    for client errors on a submission, ``InvalidInput``.
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self._headers = headers or {}
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._transport = transport

    async def request(
        self,
        method: str,
        path: str,
        *,
        idempotent: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and return the successful response."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_fixed(self._retry_delay),
            retry=retry_if_exception(_retryable(idempotent)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        url = f"{self.base_url}/{path.lstrip('/')}"

        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._send(method, url, **kwargs)
                    if idempotent and response.status_code in _TRANSIENT_STATUSES:
                        raise _TransientStatus(response)
        except _TransientStatus as exc:
            response = exc.response
        except httpx.RequestError as exc:
            raise ProviderUnavailable(f"{self.provider} unreachable: {exc!r}") from exc

        return self._check(response, idempotent)

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            return await client.request(method, url, **kwargs)

    def _check(self, response: httpx.Response, idempotent: bool) -> httpx.Response:
        if response.is_success:
            return response

        detail = f"{self.provider} returned HTTP {response.status_code}: {response.text[:500]}"
        logger.warning("%s %s failed: %s", response.request.method, response.request.url, detail)
        if (
            not idempotent
            and 400 <= response.status_code < 500
            and response.status_code not in _NOT_INPUT_STATUSES
        ):
            raise InvalidInput(detail)
        raise ProviderUnavailable(detail)


def parse_body(provider: str, response: httpx.Response, model: type[ModelT]) -> ModelT:
    """Validate a provider JSON body against ``model``.

    Raises:
        ProviderUnavailable: If the body is not JSON or does not match.
    """
    try:
        return model.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise ProviderUnavailable(
            f"{provider} returned an unexpected body: {exc}\nRaw response: {response.text[:500]}"
        ) from exc


def invalid_params(label: str, exc: ValidationError) -> InvalidInput:
    """Turn a params ``ValidationError`` into ``InvalidInput``.

    Only field locations and messages are kept; submitted values are not
    echoed back to the caller.
    """
    parts = []
    for err in exc.errors(include_input=False, include_url=False):
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return InvalidInput(f"invalid {label} params: {'; '.join(parts)}")

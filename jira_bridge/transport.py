# transport.py
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar, Union

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from jira_bridge.errors import JiraApiError, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Methods safe to repeat after an ambiguous failure
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff settings for one Transport. The delay grows by backoff_multiplier, capped at max_delay."""
    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0
    retry_non_idempotent: bool = False

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays cannot be negative")
        # Delays must never shrink between attempts
        if self.backoff_multiplier < 1:
            raise ValueError(f"backoff_multiplier must be at least 1, got {self.backoff_multiplier}")


@dataclass(frozen=True)
class Success(Generic[T]):
    payload: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.payload


@dataclass(frozen=True)
class Failure:
    message: str
    status: Optional[int] = None
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        """Raises the failure as a JiraApiError, for callers that propagate errors."""
        raise JiraApiError(self.message, status=self.status, retryable=self.retryable)


CallOutcome = Union[Success, Failure]


def mask_email(email: str) -> str:
    """Keeps the first three characters and the domain: 'jan***@example.com'."""
    return re.sub(r"^(.{3}).*(@.*)$", r"\1***\2", email)


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, JiraApiError):
        return exc.retryable
    # Timeouts, connection resets, DNS failures
    return isinstance(exc, httpx.TransportError)


class Transport:
    """
    Executes requests against the Jira host with retry and response-shape normalization.

    Every call returns a CallOutcome; nothing raised inside an attempt escapes execute().
    """

    def __init__(self, host: str, email: str, api_token: str,
                 policy: Optional[RetryPolicy] = None,
                 timeout: float = 30.0,
                 http_transport: Optional[httpx.AsyncBaseTransport] = None,
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None):
        if not host:
            raise ValueError("Jira host URL cannot be empty.")
        self.host = host.rstrip("/")
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self._client = httpx.AsyncClient(
            auth=(email, api_token),
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=http_transport,
        )
        logger.info(f"Transport initialized for host: {self.host} (user {mask_email(email)})")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.host}/{path.lstrip('/')}"

    def _attempts_for(self, method: str, idempotent: Optional[bool]) -> int:
        if idempotent is None:
            idempotent = method in IDEMPOTENT_METHODS
        if idempotent or self.policy.retry_non_idempotent:
            return max(1, self.policy.max_attempts)
        return 1

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Attempt {retry_state.attempt_number} failed ({exc}); retrying in {delay:.1f}s")

    async def execute(self, method: str, path: str, body: Any = None, *,
                      params: Optional[Dict[str, Any]] = None,
                      files: Optional[Dict[str, Any]] = None,
                      headers: Optional[Dict[str, str]] = None,
                      idempotent: Optional[bool] = None) -> CallOutcome:
        """
        Runs one logical request.

        Args:
            method: HTTP verb.
            path: Absolute URL or a path relative to the host.
            body: JSON-serializable body, or form fields when files is given.
            params: Query string parameters.
            files: Multipart file parts, as accepted by httpx.
            headers: Extra headers for this call only.
            idempotent: Overrides the method-based decision on whether the call may be retried.

        Returns:
            Success with the parsed payload ({} when the response has no usable body),
            or Failure with the extracted message, status and retryable flag.
        """
        method = method.upper()
        url = self._url(path)
        logger.debug(f"{method} {url}")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._attempts_for(method, idempotent)),
            wait=wait_exponential(
                multiplier=self.policy.initial_delay,
                exp_base=self.policy.backoff_multiplier,
                max=self.policy.max_delay,
            ),
            retry=retry_if_exception(_should_retry),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    outcome = await self._attempt(method, url, body, params, files, headers)
            return outcome
        except JiraApiError as e:
            logger.error(f"Request failed: {method} {url}: {e.message}")
            return Failure(e.message, status=e.status, retryable=e.retryable)
        except httpx.HTTPError as e:
            logger.error(f"Request failed: {method} {url}: {e}")
            return Failure(f"Network error: {e}", status=None, retryable=True)
        except Exception as e:
            logger.error(f"Unexpected error during {method} {url}: {e}", exc_info=True)
            return Failure(f"Unexpected error: {e}", status=None, retryable=False)

    async def _attempt(self, method: str, url: str, body: Any,
                       params: Optional[Dict[str, Any]],
                       files: Optional[Dict[str, Any]],
                       headers: Optional[Dict[str, str]]) -> CallOutcome:
        kwargs: Dict[str, Any] = {}
        if files is not None:
            kwargs["files"] = files
            if body:
                kwargs["data"] = body
        elif body is not None:
            kwargs["json"] = body

        response = await self._client.request(method, url, params=params, headers=headers, **kwargs)
        logger.debug(f"Response {response.status_code} {response.reason_phrase} for {method} {url}")

        if not response.is_success:
            raise self._error_from_response(response)
        return self._normalize(response)

    @staticmethod
    def _error_from_response(response: httpx.Response) -> JiraApiError:
        parsed = None
        raw_text = None
        content_type = response.headers.get("content-type", "")
        try:
            if "application/json" in content_type:
                parsed = response.json()
            else:
                raw_text = response.text or None
        except ValueError:
            logger.warning(f"Failed to parse error response body (status {response.status_code})")

        result = classify(response.status_code, parsed, response.reason_phrase, raw_text)
        return JiraApiError(result.message, status=response.status_code, retryable=result.retryable)

    @staticmethod
    def _normalize(response: httpx.Response) -> CallOutcome:
        content_type = response.headers.get("content-type")
        content_length = response.headers.get("content-length")

        # Jira signals "no content" in several ways depending on the endpoint
        if not content_type or content_length == "0" or response.status_code == 204:
            logger.debug("Empty response body")
            return Success({})

        if "application/json" in content_type:
            try:
                return Success(response.json())
            except ValueError as e:
                logger.error(f"Failed to parse JSON response: {e}")
                return Success({})

        logger.warning(
            f"Non-JSON response ignored (content-type {content_type}, {len(response.content)} bytes)")
        return Success({})

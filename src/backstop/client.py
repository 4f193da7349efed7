import json
import logging
from collections.abc import Mapping
from typing import Any, Union

from .adapters import HttpxTransport
from .csrf import coerce_csrf_provider, resolve_token
from .dedup import DedupStats, Deduplicator, dedup_key
from .env import DEFAULT_PREFIX, load_settings_from_env
from .errors import (
    get_header,
    is_retryable,
    normalize_exception,
    normalize_response,
)
from .rate_limit import Listener, RateLimitTracker, endpoint_key
from .retry import Fatal, Ok, Outcome, Retryable, RetryController
from .session import SessionStore
from .state import RateLimitEntry
from .transport import TimeoutTransport, decode_body
from .types import (
    DEFAULT_TIMEOUT,
    METHODS,
    AuthConfig,
    PreparedRequest,
    RequestDescriptor,
    RetryConfig,
    Session,
)


def _serialize_body(body: Any) -> Union[bytes, None]:
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    # sorted keys: equal payloads serialize to equal bytes
    return json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")


class ApiClient:
    def __init__(
        self,
        base_url: str = "",
        transport=None,
        store=None,
        csrf: Union[object, None] = None,
        log_level: Union[int, None] = None,
        **kwargs,
    ):
        """Initialize an ApiClient.

        Args:
            base_url (str): prefix for relative request paths
            transport (Transport | None): defaults to an HttpxTransport owned by the client
            store (KeyValueStore | None): session storage; defaults to a private MemoryStore
            csrf (str | CsrfTokenProvider | callable | None): CSRF token source for mutations
            log_level (int | None): level for the "backstop" logger
            kwargs:
            - retry_config: RetryConfig object
            - max_retries: int
            - base_delay: float
            - max_delay: float
            - timeout: float (seconds per physical attempt)
            - auth_config: AuthConfig object
            - auth_header: str
            - auth_scheme: str
            - csrf_header: str
            - namespace: str (session key prefix)
            - sleep: async callable used for every backoff/block wait

        Raises:
            ValueError: on invalid retry or timeout settings
        """
        self.base_url = base_url.rstrip("/")
        # Prefer config objects, fall back to individual keywords
        rconf = kwargs.get("retry_config")
        if rconf is None:
            rconf = RetryConfig(
                max_retries=int(kwargs.get("max_retries", 3)),
                base_delay=float(kwargs.get("base_delay", 1.0)),
                max_delay=float(kwargs.get("max_delay", 30.0)),
            )
        self._retry_config: RetryConfig = rconf
        if kwargs.get("auth_config") is not None:
            self._auth_config: AuthConfig = kwargs["auth_config"]
        else:
            self._auth_config = AuthConfig(
                header=kwargs.get("auth_header", "Authorization"),
                scheme=kwargs.get("auth_scheme", "Bearer"),
                csrf_header=kwargs.get("csrf_header", "X-CSRF-Token"),
            )
        self.timeout = float(kwargs.get("timeout", DEFAULT_TIMEOUT))
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        sleep = kwargs.get("sleep")
        self._own_transport = transport is None
        self._transport = TimeoutTransport(transport if transport is not None else HttpxTransport())
        self._sessions = SessionStore(store, namespace=kwargs.get("namespace", "backstop"))
        self._sessions.load()
        self._csrf = coerce_csrf_provider(csrf)
        self._rate_limits = RateLimitTracker(sleep=sleep, jitter=rconf.jitter)
        self._retry = RetryController(rconf, sleep=sleep)
        self._dedup = Deduplicator()
        self._logger = logging.getLogger("backstop")
        if log_level is not None:
            self._logger.setLevel(log_level)

    # ---------- convenience: build from env ----------
    @classmethod
    def from_env(
        cls,
        prefix: str = DEFAULT_PREFIX,
        env_path: Union[str, None] = None,
        **kwargs,
    ) -> "ApiClient":
        """Build a client from PREFIX* variables; explicit kwargs win over the environment."""
        settings = load_settings_from_env(prefix=prefix, env_path=env_path)
        settings.update(kwargs)
        base_url = settings.pop("base_url", "")
        return cls(base_url, **settings)

    # ---------- lifecycle ----------
    async def aclose(self) -> None:
        if self._own_transport:
            await self._transport.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    # ---------- configuration / state accessors ----------
    @property
    def retry_config(self) -> RetryConfig:
        return self._retry_config

    @property
    def auth_config(self) -> AuthConfig:
        return self._auth_config

    @property
    def dedup_stats(self) -> DedupStats:
        return self._dedup.stats

    def rate_limit_state(self, method: str, path: str) -> Union[RateLimitEntry, None]:
        return self._rate_limits.entry(endpoint_key(method, path))

    def on_rate_limit(self, listener: Listener):
        """Subscribe to 429 notifications; returns an unsubscribe callable."""
        return self._rate_limits.subscribe(listener)

    # ---------- session ----------
    @property
    def session(self) -> Union[Session, None]:
        return self._sessions.session

    @property
    def is_authenticated(self) -> bool:
        return self._sessions.session is not None

    def set_session(self, session: Union[Session, None]) -> None:
        self._sessions.persist(session)

    def set_session_tokens(self, payload: Mapping[str, Any]) -> Session:
        session = Session.from_token_payload(payload)
        self._sessions.persist(session)
        return session

    def clear_session(self) -> None:
        self._sessions.persist(None)

    # ---------- public API ----------
    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Union[Mapping[str, str], None] = None,
        timeout: Union[float, None] = None,
    ) -> Any:
        """Perform one logical call and return the decoded body.

        Raises ApiError; transient failures are retried internally.
        """
        method = method.upper()
        if method not in METHODS:
            raise ValueError(f"unsupported method {method!r}; use one of {sorted(METHODS)}")
        descriptor = RequestDescriptor(
            method=method,
            path=path,
            body=_serialize_body(body),
            headers=dict(headers or {}),
            timeout=timeout,
        )
        return await self.dedup_call(descriptor)

    async def dedup_call(self, descriptor: RequestDescriptor) -> Any:
        key = dedup_key(descriptor)
        return await self._dedup.call(key, lambda: self._execute(descriptor))

    # sugar
    async def get(self, path: str, **kw) -> Any:
        return await self.request("GET", path, **kw)

    async def post(self, path: str, body: Any = None, **kw) -> Any:
        return await self.request("POST", path, body=body, **kw)

    async def put(self, path: str, body: Any = None, **kw) -> Any:
        return await self.request("PUT", path, body=body, **kw)

    async def delete(self, path: str, **kw) -> Any:
        return await self.request("DELETE", path, **kw)

    # ---------- internal ----------
    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _execute(self, descriptor: RequestDescriptor) -> Any:
        context = f"{descriptor.method} {descriptor.path}"
        return await self._retry.run(lambda n: self._attempt(descriptor, n), context)

    async def _build_headers(self, descriptor: RequestDescriptor) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self._sessions.authorization_header(self._auth_config))
        if descriptor.is_mutating:
            try:
                token = await resolve_token(self._csrf, descriptor)
            except Exception as e:
                self._logger.warning(f"CSRF token provider failed: {e}; sending without token")
                token = None
            if token:
                headers[self._auth_config.csrf_header] = token
        headers.update(descriptor.headers)
        return headers

    async def _attempt(self, descriptor: RequestDescriptor, attempt: int) -> Outcome:
        endpoint = endpoint_key(descriptor.method, descriptor.path)
        await self._rate_limits.check_and_wait(endpoint)
        request = PreparedRequest(
            method=descriptor.method,
            url=self._url(descriptor.path),
            headers=await self._build_headers(descriptor),
            body=descriptor.body,
            timeout=descriptor.timeout if descriptor.timeout is not None else self.timeout,
        )
        self._logger.debug(
            f"req start method={request.method} url={request.url} attempt={attempt + 1}"
        )
        try:
            response = await self._transport.send_with_timeout(request)
        except Exception as e:
            error = normalize_exception(e)
            self._logger.warning(
                f"request error method={request.method} url={request.url}: "
                f"{error.code} {error.message}"
            )
            return Retryable(error) if is_retryable(error, self._retry_config) else Fatal(error)
        self._logger.debug(
            f"req done method={request.method} url={request.url} status={response.status}"
        )

        if response.ok:
            self._rate_limits.clear(endpoint)
            return Ok(decode_body(response))

        error = normalize_response(response)
        if response.status == 429:  # noqa: PLR2004, http status code can be constant
            delay = self._rate_limits.record_limited(
                endpoint, get_header(response.headers, "retry-after")
            )
            if error.retry_after_seconds is None:
                error = error.with_retry_after(delay)
            return Retryable(error, throttled=True)

        self._rate_limits.clear(endpoint)
        if response.status == 401:  # noqa: PLR2004, http status code can be constant
            self._logger.info(f"401 on {descriptor.method} {descriptor.path}; clearing session")
            self._sessions.persist(None)
            return Fatal(error)
        return Retryable(error) if is_retryable(error, self._retry_config) else Fatal(error)

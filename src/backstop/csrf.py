import inspect
import time
from typing import Callable, Union

from .types import RequestDescriptor

# Defaults used when inspect.signature cannot determine argument counts
DEFAULT_TOKEN_FN_ARGC = 0  # token_fn()

# token functions receive the request at 1+ args
TOKEN_FN_WITH_REQUEST_ARGC = 1

CSRF_TOKEN_KEY = "csrf_token"
CSRF_EXPIRY_KEY = "csrf_token_expiry"


def _count_positional_args(fn, default: int) -> int:
    """Return count of positional params for fn; fall back to default on failure."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return default
    return sum(
        1
        for p in sig.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    )


class CsrfTokenProvider:
    """Supplies the CSRF token for a mutating request (None -> no header)."""

    def token(self, request: RequestDescriptor):
        return None


class StaticCsrfToken(CsrfTokenProvider):
    def __init__(self, value: str):
        self.value = value

    def token(self, request: RequestDescriptor):
        return self.value or None


class StoredCsrfToken(CsrfTokenProvider):
    """Read the token from a KeyValueStore, ignoring it once expired.

    The expiry entry holds epoch seconds; a missing expiry means no expiry.
    """

    def __init__(self, store, namespace: str = "backstop"):
        self.store = store
        self.namespace = namespace

    def _key(self, name: str) -> str:
        return f"{self.namespace}:{name}" if self.namespace else name

    def token(self, request: RequestDescriptor):
        value = self.store.get(self._key(CSRF_TOKEN_KEY))
        if not value:
            return None
        expiry = self.store.get(self._key(CSRF_EXPIRY_KEY))
        if expiry:
            try:
                if float(expiry) <= time.time():
                    return None
            except ValueError:
                return None
        return value

    def store_token(self, value: str, ttl: Union[float, None] = None) -> None:
        self.store.set(self._key(CSRF_TOKEN_KEY), value)
        if ttl is not None:
            self.store.set(self._key(CSRF_EXPIRY_KEY), str(time.time() + ttl))
        else:
            self.store.delete(self._key(CSRF_EXPIRY_KEY))

    def clear(self) -> None:
        self.store.delete(self._key(CSRF_TOKEN_KEY))
        self.store.delete(self._key(CSRF_EXPIRY_KEY))


class FunctionalCsrfProvider(CsrfTokenProvider):
    """Wrap a user-supplied token function into a CsrfTokenProvider.

    Accepted function signatures (sync or async):
        - token_fn() -> str | None
        - token_fn(request) -> str | None
    """

    def __init__(self, token_fn: Callable):
        self.token_fn = token_fn
        self._argc = _count_positional_args(token_fn, DEFAULT_TOKEN_FN_ARGC)

    def token(self, request: RequestDescriptor):
        if self._argc >= TOKEN_FN_WITH_REQUEST_ARGC:
            return self.token_fn(request)
        return self.token_fn()


async def resolve_token(provider: CsrfTokenProvider, request: RequestDescriptor):
    value = provider.token(request)
    if inspect.isawaitable(value):
        value = await value
    return value or None


def coerce_csrf_provider(csrf: Union[object, None]) -> CsrfTokenProvider:
    """Turn None | str | CsrfTokenProvider | callable into a CsrfTokenProvider.

    Accepted inputs:
      - None                      -> no CSRF header
      - str                       -> StaticCsrfToken
      - CsrfTokenProvider instance (returned as-is)
      - callable: token_fn() or token_fn(request), sync or async
    """
    if csrf is None:
        return CsrfTokenProvider()
    if isinstance(csrf, CsrfTokenProvider):
        return csrf
    if isinstance(csrf, str):
        return StaticCsrfToken(csrf)
    if callable(csrf):
        return FunctionalCsrfProvider(csrf)
    raise TypeError("csrf must be None, a str, a CsrfTokenProvider, or a callable")

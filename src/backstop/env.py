import os
from typing import Any, Callable, Union

DEFAULT_PREFIX = "BACKSTOP_"

# suffix -> (client keyword, converter)
_SETTINGS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "BASE_URL": ("base_url", str),
    "TIMEOUT": ("timeout", float),
    "MAX_RETRIES": ("max_retries", int),
    "BASE_DELAY": ("base_delay", float),
    "MAX_DELAY": ("max_delay", float),
    "AUTH_HEADER": ("auth_header", str),
    "AUTH_SCHEME": ("auth_scheme", str),
    "CSRF_HEADER": ("csrf_header", str),
    "NAMESPACE": ("namespace", str),
}


def _parse_env_file(env_path: str) -> dict[str, str]:
    """Read KEY=VALUE pairs from a .env file without touching os.environ.

    Blank lines, comments and lines without '=' are skipped; one layer of
    surrounding quotes is removed from values. A missing file yields {}.
    """
    values: dict[str, str] = {}
    try:
        with open(env_path, encoding="utf-8") as f:
            lines = f.readlines()
    except FileNotFoundError:
        return values
    for raw_line in lines:
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = (part.strip() for part in line.split("=", 1))
        if len(val) >= 2 and val[0] == val[-1] and val[0] in ("'", '"'):  # noqa: PLR2004
            val = val[1:-1]
        if key:
            values[key] = val
    return values


def load_settings_from_env(
    prefix: str = DEFAULT_PREFIX,
    env_path: Union[str, None] = None,
) -> dict[str, Any]:
    """Collect ApiClient keyword arguments from the environment.

    Looks up PREFIX + BASE_URL, TIMEOUT, MAX_RETRIES, BASE_DELAY, MAX_DELAY,
    AUTH_HEADER, AUTH_SCHEME, CSRF_HEADER and NAMESPACE. Values from the real
    environment take precedence over the optional .env file. Empty values are
    ignored; malformed numbers raise ValueError naming the variable.
    """
    file_env = _parse_env_file(env_path) if env_path else {}
    env_map: dict[str, str] = {**file_env, **os.environ}

    settings: dict[str, Any] = {}
    for suffix, (kw, convert) in _SETTINGS.items():
        var = f"{prefix}{suffix}"
        raw = env_map.get(var)
        if raw is None or raw.strip() == "":
            continue
        try:
            settings[kw] = convert(raw.strip())
        except ValueError as e:
            raise ValueError(f"invalid value for {var}: {raw!r}") from e
    return settings

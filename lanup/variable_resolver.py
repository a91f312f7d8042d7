"""
Variable resolution for lanup.

Combines the URL templates from ``.lanup.yaml`` with the provider
contributions and rewrites every loopback reference to the selected LAN
address. The output is the managed variable set handed to the env file merge.
"""

from typing import Dict, List, Mapping, Optional, Sequence
from urllib.parse import SplitResult, urlsplit, urlunsplit

from .config_models import ProjectConfig
from .env_manager import EnvVar
from .errors import InvalidURLError
from .service_inspector import collect_provider_variables

LOOPBACK_TOKENS = ("localhost", "127.0.0.1")


def transform_url(value: str, address: str) -> str:
    """
    Replace every literal ``localhost`` and ``127.0.0.1`` in ``value``.

    All occurrences are replaced, including ones inside query strings. Values
    without either token come back unchanged.

    Example:
        ```python
        transform_url("http://localhost:8000?x=http://localhost:3000", "192.168.1.100")
        # "http://192.168.1.100:8000?x=http://192.168.1.100:3000"
        ```
    """
    for token in LOOPBACK_TOKENS:
        value = value.replace(token, address)
    return value


def resolve_variables(templates: Mapping[str, str], address: str) -> List[EnvVar]:
    """
    Rewrite templates against ``address`` and mark every result managed.

    Key order of ``templates`` is preserved.
    """
    return [
        EnvVar(key=key, value=transform_url(value, address), managed=True)
        for key, value in templates.items()
    ]


def collect_variables(project_config: ProjectConfig,
                      providers: Sequence[object] = (),
                      warnings: Optional[List[str]] = None) -> Dict[str, str]:
    """
    Gather URL templates from the configuration and the enabled providers.

    Configured variables come first; provider variables are added after them
    and override a configured key of the same name.

    Raises:
        ProviderOutputError: If a provider returns malformed output.
    """
    templates: Dict[str, str] = dict(project_config.vars)
    templates.update(collect_provider_variables(providers, warnings))
    return templates


def validate_expose_url(url: str) -> SplitResult:
    """
    Check that ``url`` is an http(s) URL pointing at ``localhost`` or ``127.0.0.1``.

    Returns:
        SplitResult: The parsed URL.

    Raises:
        InvalidURLError: If the URL has no scheme, a non-http scheme, no host,
            or a host other than a loopback name.
    """
    try:
        parsed = urlsplit(url)
        # .port raises ValueError for non-numeric or out of range ports
        _ = parsed.port
    except ValueError as e:
        raise InvalidURLError("Invalid URL format", cause=e) from e

    if not parsed.scheme:
        raise InvalidURLError("Invalid URL: missing protocol (http:// or https://)")
    if parsed.scheme not in ("http", "https"):
        raise InvalidURLError(f"Invalid URL: protocol must be http or https, got {parsed.scheme}")
    if not parsed.hostname:
        raise InvalidURLError("Invalid URL: missing hostname")
    if parsed.hostname not in LOOPBACK_TOKENS:
        raise InvalidURLError(
            f"Invalid URL: hostname must be localhost or 127.0.0.1, got {parsed.hostname}")
    return parsed


def expose_url(url: str, address: str, port: Optional[int] = None, https: bool = False) -> str:
    """
    Rewrite a single loopback URL for LAN access.

    Only the host part is rewritten; a custom ``port`` replaces the original
    one and ``https`` upgrades the scheme.

    Example:
        ```python
        expose_url("http://localhost:3000/app", "192.168.1.20", port=8000, https=True)
        # "https://192.168.1.20:8000/app"
        ```

    Raises:
        InvalidURLError: If ``url`` fails ``validate_expose_url``.
    """
    parsed = validate_expose_url(url)

    if port:
        if not 0 < port <= 65535:
            raise InvalidURLError(f"Invalid port {port}: must be between 1 and 65535")
        netloc = f"{address}:{port}"
    elif parsed.port:
        netloc = f"{address}:{parsed.port}"
    else:
        netloc = address

    if parsed.username:
        credentials = parsed.username
        if parsed.password:
            credentials = f"{credentials}:{parsed.password}"
        netloc = f"{credentials}@{netloc}"

    scheme = "https" if https else parsed.scheme
    return urlunsplit((scheme, netloc, parsed.path, parsed.query, parsed.fragment))

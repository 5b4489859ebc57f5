import re
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from .errors import InvalidOverrideFormat
from .models import Endpoint
from .normalize import normalize_host, parse_ipv4

ALLOWED_SCHEMES = {"http", "https"}
_HOSTNAME_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
_DOTTED_NUMERIC = re.compile(r"^[0-9.]+$")


def _valid_hostname(host: str) -> bool:
    if not host or len(host) > 253:
        return False
    if _DOTTED_NUMERIC.match(host):
        # Looks numeric, so it must be a real IPv4 address
        return parse_ipv4(host) is not None
    return all(_HOSTNAME_LABEL.match(label) for label in host.split("."))


def _valid_port(port: Optional[int]) -> bool:
    return port is None or 0 < port < 65536


def _split_host_port(value: str) -> Tuple[str, Optional[str]]:
    if value.count(":") == 1:
        host, port = value.split(":", 1)
        return host, port
    return value, None


def validate_override(value: str) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.

    Accepted forms: ``10.0.0.5``, ``10.0.0.5:5001``, ``myhost.local`` and
    full base URLs such as ``http://10.0.0.5:5000/api/``.
    """
    errors: List[str] = []

    if not isinstance(value, str) or value.strip() == "":
        return ["Server address must be a non-empty string"]

    raw = value.strip()
    if "://" in raw:
        parsed = urlparse(raw)
        if parsed.scheme.lower() not in ALLOWED_SCHEMES:
            errors.append(f"Scheme must be http or https, got '{parsed.scheme}'")
        try:
            port = parsed.port
        except ValueError:
            errors.append("Port must be a number between 1 and 65535")
            port = None
        if not _valid_hostname(normalize_host(parsed.hostname or "")):
            errors.append("URL must contain a valid host")
        if not _valid_port(port):
            errors.append("Port must be a number between 1 and 65535")
        if parsed.query or parsed.fragment:
            errors.append("Base URL must not carry a query or fragment")
        return errors

    if "/" in raw or " " in raw:
        errors.append("Address must be a host or host:port, not a path")
        return errors

    host, port_text = _split_host_port(raw)
    if not _valid_hostname(normalize_host(host)):
        errors.append(f"'{host}' is not a valid IPv4 address or host name")
    if port_text is not None:
        if not port_text.isdigit() or not _valid_port(int(port_text)):
            errors.append("Port must be a number between 1 and 65535")
    return errors


def parse_override(value: str) -> Tuple[Optional[str], str, Optional[int], Optional[str]]:
    """
    Validate and split operator input into (scheme, host, port, path_prefix).

    Parts the operator did not give come back as ``None`` so the caller can
    fill them from configuration.

    Raises:
        InvalidOverrideFormat: If ``validate_override`` reports any error.
    """
    errors = validate_override(value)
    if errors:
        raise InvalidOverrideFormat(value, errors)

    raw = value.strip()
    if "://" in raw:
        parsed = urlparse(raw)
        path = parsed.path or None
        if path and not path.endswith("/"):
            path += "/"
        return parsed.scheme.lower(), normalize_host(parsed.hostname), parsed.port, path

    host, port_text = _split_host_port(raw)
    return None, normalize_host(host), int(port_text) if port_text else None, None


def override_endpoint(value: str, settings) -> Endpoint:
    """Turn operator input into an endpoint, defaulting missing parts from ``settings``."""
    scheme, host, port, path_prefix = parse_override(value)
    return Endpoint(
        scheme=scheme or settings.scheme,
        host=host,
        port=port if port is not None else (None if scheme else settings.port),
        path_prefix=path_prefix or settings.path_prefix,
    )

from urllib.parse import urlsplit, urlunsplit

from lexiflow.models.errors import EmptyUrlError, MalformedUrlError

ALLOWED_SCHEMES = {"http", "https"}
DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str | None) -> str:
    """
    Validate an absolute http(s) URL and return its canonical form.
    Lower-cases scheme and host, drops the default port and turns an empty
    path into "/". Query and fragment are kept as given.
    """
    if url is None or not url.strip():
        raise EmptyUrlError("URL cannot be empty")

    try:
        parsed = urlsplit(url.strip())
        port = parsed.port
    except ValueError as exc:
        raise MalformedUrlError(f"Invalid URL format: {exc}") from exc

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise MalformedUrlError("Invalid URL format: scheme must be http or https")

    host = parsed.hostname
    if not host or any(ch.isspace() for ch in parsed.netloc):
        raise MalformedUrlError("Invalid URL format: missing or invalid host")

    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"
    if "@" in parsed.netloc:
        userinfo = parsed.netloc.rsplit("@", 1)[0]
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((scheme, netloc, parsed.path or "/", parsed.query, parsed.fragment))

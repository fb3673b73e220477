"""URL canonicalization and domain classification.

Every URL that enters the crawl goes through normalize_url first; the
resulting string is the key for queue membership, the visited set and
stored page records.
"""

import logging
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import urlsplit, urlunsplit, urljoin

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")

DEFAULT_PORTS = {"http": "80", "https": "443"}

FILE_TYPE_EXTENSIONS = {
    "html": {".html", ".htm", ".xhtml", ".php", ".asp", ".aspx", ".jsp"},
    "pdf": {".pdf"},
    "image": {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico", ".bmp", ".avif"},
    "css": {".css"},
    "js": {".js", ".mjs"},
}


def normalize_url(url: str, base_url: Optional[str] = None) -> Optional[str]:
    """Canonicalize a URL.

    Rules, applied in order: trim whitespace, reject empty and hash-only
    input, give protocol-relative URLs an https scheme, resolve relative
    URLs against base_url (no base means failure), drop the fragment, sort
    query parameters by key, lower-case scheme and host, upgrade http to
    https. Path case and trailing slashes are kept.

    Args:
        url: Raw URL, absolute or relative
        base_url: URL of the page the link was found on

    Returns:
        Canonical URL string, or None if the URL cannot be used
    """
    if url is None:
        return None

    url = url.strip()
    if not url or url.startswith("#"):
        return None

    try:
        if url.startswith("//"):
            url = f"https:{url}"

        if not urlsplit(url).scheme:
            if not base_url:
                return None
            url = urljoin(base_url.strip(), url)

        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        if scheme not in ALLOWED_SCHEMES:
            return None

        hostname = parts.hostname
        if not hostname:
            return None

        netloc = _build_netloc(parts, scheme)
        path = parts.path or "/"
        query = _sort_query(parts.query)
    except ValueError as e:
        logger.debug(f"Could not normalize {url!r}: {e}")
        return None

    return urlunsplit(("https", netloc, path, query, ""))


def _build_netloc(parts, scheme: str) -> str:
    """Rebuild the authority with a lower-cased host and no default port."""
    host = parts.hostname.lower()
    if ":" in host:
        host = f"[{host}]"

    port = parts.port
    if port is not None and str(port) not in (DEFAULT_PORTS[scheme], DEFAULT_PORTS["https"]):
        host = f"{host}:{port}"

    netloc = parts.netloc
    if "@" in netloc:
        userinfo = netloc.rsplit("@", 1)[0]
        return f"{userinfo}@{host}"
    return host


def _sort_query(query: str) -> str:
    """Sort query parameters by key; duplicate keys keep their order."""
    if not query:
        return ""
    params = [param for param in query.split("&") if param]
    params.sort(key=lambda param: param.split("=", 1)[0])
    return "&".join(params)


def strip_www(host: str) -> str:
    """Lower-case a hostname and drop one leading 'www.'."""
    host = host.lower()
    if host.startswith("www."):
        return host[4:]
    return host


def extract_domain(url: str) -> Optional[str]:
    """Return the lower-cased hostname of a URL.

    Input without a scheme is treated as an https URL, so a bare
    'example.com/page' yields 'example.com'.
    """
    if not url:
        return None
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"https://{candidate.lstrip('/')}"
    try:
        hostname = urlsplit(candidate).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def is_same_domain(url_a: str, url_b: str, base_domain: Optional[str] = None) -> bool:
    """Check whether two URLs share a domain, ignoring a leading 'www.'.

    With base_domain given, both URLs must belong to that domain.
    Invalid input is never the same domain.
    """
    domain_a = extract_domain(url_a)
    domain_b = extract_domain(url_b)
    if not domain_a or not domain_b:
        return False

    stripped_a = strip_www(domain_a)
    stripped_b = strip_www(domain_b)

    if base_domain:
        base = strip_www(base_domain)
        return stripped_a == base and stripped_b == base

    return stripped_a == stripped_b


def is_internal_url(url: str, base_domain: str) -> bool:
    """Check whether a URL belongs to the crawl's base domain."""
    domain = extract_domain(url)
    if not domain or not base_domain:
        return False
    return strip_www(domain) == strip_www(base_domain)


def get_file_type(url: str, content_type: Optional[str] = "") -> str:
    """Classify a resource from its Content-Type, falling back to the extension.

    Returns:
        One of html, pdf, image, css, js, other
    """
    content_type = (content_type or "").lower()
    if content_type:
        if "text/html" in content_type or "application/xhtml" in content_type:
            return "html"
        if "application/pdf" in content_type:
            return "pdf"
        if content_type.startswith("image/"):
            return "image"
        if "text/css" in content_type:
            return "css"
        if "javascript" in content_type:
            return "js"

    try:
        path = urlsplit(url).path
    except ValueError:
        return "other"

    extension = PurePosixPath(path).suffix.lower()
    for file_type, extensions in FILE_TYPE_EXTENSIONS.items():
        if extension in extensions:
            return file_type
    return "other"

from urllib.parse import urljoin, urlparse

from fors.exceptions import ResolveUrlError


def is_absolute_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


def resolve_url(base: str, uri: str) -> str:
    """Resolve a playlist URI against the URL of the playlist that referenced it.

    Absolute URIs are returned as they are.
    """
    uri = uri.strip()
    if is_absolute_url(uri):
        return uri
    if not uri or not is_absolute_url(base or ""):
        raise ResolveUrlError(base, uri)

    return urljoin(base, uri)


def update_scheme(current: str, target: str, force: bool = True) -> str:
    """
    Take the scheme from the current URL and apply it to the
    target URL if it's missing, or if force is set.
    """
    scheme = urlparse(current).scheme
    if "//" not in target:
        # "host:port" without any scheme or netloc marker
        return f"{scheme}://{target}"

    target_p = urlparse(target)
    if not target_p.scheme:
        return f"{scheme}:{target}"
    if force:
        return target_p._replace(scheme=scheme).geturl()

    return target

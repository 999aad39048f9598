# locator.py
import re
from typing import NamedTuple, Optional
from urllib.parse import urlencode, urlparse

import config
from errors import InvalidSourceUrl
from utils import title_from_slug

# /{2-letter locale?}/{digits}/{slug?}/...
SET_PATH_RE = re.compile(r"^/(?:[a-z]{2}/)?(\d+)(?:/([^/?#]*)(?:/[^?#]*)?)?$", re.I)


class SetLocation(NamedTuple):
    set_id: str
    title_guess: str


def locate_set(url: str, host: Optional[str] = None) -> SetLocation:
    """Validate a set URL and pull out its numeric id. Never touches the network."""
    host = (host or config.PLATFORM_HOST).lower()
    try:
        parsed = urlparse((url or "").strip())
        hostname = (parsed.hostname or "").lower()
    except ValueError as e:
        raise InvalidSourceUrl("Source URL could not be parsed.", {"source_url": url}) from e

    if parsed.scheme not in ("http", "https") or hostname not in (host, f"www.{host}"):
        raise InvalidSourceUrl(f"URL must point to a {host} flashcard set.", {"source_url": url})

    m = SET_PATH_RE.match(parsed.path or "")
    if not m:
        raise InvalidSourceUrl("URL does not contain a numeric set id.", {"source_url": url})

    return SetLocation(set_id=m.group(1), title_guess=title_from_slug(m.group(2) or ""))


def set_page_url(set_id: str, host: Optional[str] = None) -> str:
    return f"https://{host or config.PLATFORM_HOST}/{set_id}/"


def data_endpoint_url(set_id: str, host: Optional[str] = None) -> str:
    query = urlencode({
        "filters[studiableContainerId]": set_id,
        "filters[studiableContainerType]": 1,
        "perPage": 1000,
        "page": 1,
    })
    return f"https://{host or config.PLATFORM_HOST}/webapi/3.4/studiable-item-documents?{query}"

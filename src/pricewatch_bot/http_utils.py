from __future__ import annotations

import json
import os
import ssl
from functools import lru_cache
from decimal import Decimal
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import certifi

from pricewatch_bot.errors import VenueQueryError

USER_AGENT = "pricewatch-bot/1.0"


@lru_cache(maxsize=1)
def _ssl_context() -> ssl.SSLContext:
    # SSL_CERT_FILE / SSL_CERT_DIR take precedence over the certifi bundle.
    cafile = os.getenv("SSL_CERT_FILE") or None
    capath = os.getenv("SSL_CERT_DIR") or None
    if cafile is None and capath is None:
        cafile = certifi.where()
    return ssl.create_default_context(cafile=cafile, capath=capath)


def get_json(url: str, timeout: float = 10.0) -> Any:
    """GET `url` and decode the JSON body; every failure surfaces as VenueQueryError."""
    request = Request(url, headers={"User-Agent": USER_AGENT, "Accept": "application/json"})
    try:
        with urlopen(request, timeout=timeout, context=_ssl_context()) as response:
            status = getattr(response, "status", 200)
            body = response.read().decode("utf-8")
    except HTTPError as exc:
        raise VenueQueryError(f"API error for {url}. Status code {exc.code}") from exc
    except (URLError, TimeoutError, OSError) as exc:
        raise VenueQueryError(f"API request failed for {url}: {exc}") from exc

    if status != 200:
        raise VenueQueryError(f"API error for {url}. Status code {status}")
    try:
        # JSON numbers become Decimal, never float.
        return json.loads(body, parse_float=Decimal)
    except json.JSONDecodeError as exc:
        raise VenueQueryError(f"API returned invalid JSON for {url}") from exc

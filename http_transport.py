"""
Thin requests wrapper used by the bulk job client.

Unlike ``response.raise_for_status()`` this never raises on an HTTP status;
the caller decides what counts as a failure.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from requests.structures import CaseInsensitiveDict

from bulk_errors import RemoteError

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    status_code: int
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    content: bytes = b""

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    @property
    def ok(self) -> bool:
        return self.status_code < 300


class RequestsTransport:
    """Issues GET/POST/PATCH/PUT/DELETE calls through a shared requests.Session."""

    def __init__(self, timeout: float = 30, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                data: Any = None, params: Optional[Dict[str, Any]] = None) -> HttpResponse:
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                data=data,
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise RemoteError(None, url, str(e)) from e
        return HttpResponse(
            status_code=response.status_code,
            headers=CaseInsensitiveDict(response.headers),
            content=response.content,
        )

    def close(self):
        self.session.close()

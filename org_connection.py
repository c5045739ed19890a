"""
Org session and bulk settings used by the Bulk API 2.0 job modules.

The session is owned by whatever authenticated against the org; the bulk
modules only read it.
"""
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_API_VERSION = "61.0"


@dataclass(frozen=True)
class Session:
    """Read-only connection details for one Salesforce org.

    Attributes:
        instance_url: Org instance URL (e.g., 'https://mycompany.my.salesforce.com')
        api_version: REST API version without the leading 'v' (e.g., "61.0")
        access_token: OAuth access token or session id
    """
    instance_url: str
    api_version: str
    access_token: str

    @property
    def base_url(self) -> str:
        return f"{self.instance_url.rstrip('/')}/services/data/v{self.api_version}"

    @property
    def ingest_url(self) -> str:
        return f"{self.base_url}/jobs/ingest"

    @property
    def query_url(self) -> str:
        return f"{self.base_url}/jobs/query"

    @property
    def auth_header(self) -> str:
        return f"Bearer {self.access_token}"

    @classmethod
    def from_org_details(cls, org_details: Dict[str, Any]) -> "Session":
        """Build a session from stored org credentials.

        Args:
            org_details: Dictionary with 'instance_url', 'access_token' and
                         optionally 'api_version'

        Returns:
            A Session for the org
        """
        instance_url = org_details.get("instance_url")
        access_token = org_details.get("access_token")
        if not instance_url or not access_token:
            raise ValueError("org_details must contain instance_url and access_token")
        api_version = str(org_details.get("api_version") or DEFAULT_API_VERSION).lstrip("v")
        return cls(instance_url=instance_url, api_version=api_version, access_token=access_token)


@dataclass(frozen=True)
class BulkSettings:
    """Polling and paging defaults for bulk jobs (seconds / record counts)."""
    poll_interval: float = 0.5
    poll_timeout: float = 300.0
    max_records_per_page: int = 50000
    http_timeout: float = 30.0


def load_session(instance_url: Optional[str] = None,
                 access_token: Optional[str] = None,
                 api_version: Optional[str] = None) -> Session:
    """Build a Session from explicit arguments, falling back to the environment.

    Reads ORG_INSTANCE_URL, ORG_ACCESS_TOKEN and ORG_API_VERSION (default 61.0).
    """
    return Session.from_org_details({
        "instance_url": instance_url or os.getenv("ORG_INSTANCE_URL"),
        "access_token": access_token or os.getenv("ORG_ACCESS_TOKEN"),
        "api_version": api_version or os.getenv("ORG_API_VERSION", DEFAULT_API_VERSION),
    })


def load_bulk_settings() -> BulkSettings:
    """Read BULK_POLL_INTERVAL, BULK_POLL_TIMEOUT, BULK_MAX_RECORDS and BULK_HTTP_TIMEOUT."""
    defaults = BulkSettings()
    return BulkSettings(
        poll_interval=float(os.getenv("BULK_POLL_INTERVAL", defaults.poll_interval)),
        poll_timeout=float(os.getenv("BULK_POLL_TIMEOUT", defaults.poll_timeout)),
        max_records_per_page=int(os.getenv("BULK_MAX_RECORDS", defaults.max_records_per_page)),
        http_timeout=float(os.getenv("BULK_HTTP_TIMEOUT", defaults.http_timeout)),
    )

"""
Minimal Microsoft Graph client for device records.

Uses the client credentials flow of an app registration with
Device.ReadWrite.All. Only the calls the pruning runbook needs are
implemented: list devices and delete a device.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Iterable, List, Optional

import requests
from pydantic import BaseModel, Field

from vdiops.aad.throttle import BatchThrottle
from vdiops.core.config import Settings, settings as default_settings
from vdiops.core.exceptions import GraphError

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
DEVICE_FIELDS = (
    "id",
    "deviceId",
    "displayName",
    "approximateLastSignInDateTime",
    "registrationDateTime",
    "operatingSystem",
    "trustType",
    "accountEnabled",
)
# Refresh the token this many seconds before it expires
TOKEN_MARGIN = 60


class Device(BaseModel):
    id: str
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    display_name: str = Field(default="", alias="displayName")
    approximate_last_sign_in: Optional[datetime] = Field(default=None, alias="approximateLastSignInDateTime")
    registration_time: Optional[datetime] = Field(default=None, alias="registrationDateTime")
    operating_system: Optional[str] = Field(default=None, alias="operatingSystem")
    trust_type: Optional[str] = Field(default=None, alias="trustType")
    account_enabled: Optional[bool] = Field(default=None, alias="accountEnabled")

    model_config = {"populate_by_name": True}

    @property
    def last_activity(self) -> Optional[datetime]:
        return self.approximate_last_sign_in or self.registration_time


def matches_prefix(name: str, prefixes: Iterable[str]) -> bool:
    prefixes = [p.lower() for p in prefixes if p]
    if not prefixes:
        return True
    return any(name.lower().startswith(p) for p in prefixes)


class GraphClient:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        throttle: Optional[BatchThrottle] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or default_settings
        self.session = session or requests.Session()
        self.throttle = throttle or BatchThrottle(
            self.settings.throttle_batch_size, self.settings.throttle_interval
        )
        self.clock = clock
        self._token = None
        self._token_expires = 0.0

    # Authentication

    def _token_url(self) -> str:
        return f"{self.settings.authority_url.rstrip('/')}/{self.settings.tenant_id}/oauth2/v2.0/token"

    def get_token(self) -> str:
        if self._token and self.clock() < self._token_expires - TOKEN_MARGIN:
            return self._token

        secret = self.settings.resolve_client_secret()
        if not (self.settings.tenant_id and self.settings.client_id and secret):
            raise GraphError("tenant_id, client_id and client secret must be configured")

        try:
            response = self.session.post(
                self._token_url(),
                data={
                    "client_id": self.settings.client_id,
                    "client_secret": secret,
                    "scope": GRAPH_SCOPE,
                    "grant_type": "client_credentials",
                },
                timeout=30,
            )
        except requests.RequestException as e:
            raise GraphError(f"Token request failed: {e}") from e
        if response.status_code != 200:
            raise GraphError(f"Token request failed: {response.status_code} {response.text[:200]}",
                             response.status_code)
        try:
            data = response.json()
            token = data["access_token"]
            expires_in = int(data.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as e:
            raise GraphError(f"Unexpected token response: {response.text[:200]}", response.status_code) from e
        self._token = token
        self._token_expires = self.clock() + expires_in
        logger.debug("Acquired Graph access token")
        return self._token

    # Requests

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        if not url.startswith("http"):
            url = f"{self.settings.graph_url.rstrip('/')}/{url.lstrip('/')}"
        self.throttle.wait()
        headers = {"Authorization": f"Bearer {self.get_token()}"}
        try:
            response = self.session.request(method, url, headers=headers, timeout=60, **kwargs)
        except requests.RequestException as e:
            raise GraphError(f"{method} {url} failed: {e}") from e
        if response.status_code >= 400:
            raise GraphError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                response.status_code,
            )
        return response

    def list_devices(self, prefixes: Optional[Iterable[str]] = None) -> List[Device]:
        """Return all devices whose display name starts with one of ``prefixes``."""
        prefixes = list(prefixes if prefixes is not None else self.settings.device_prefixes)
        url = "devices"
        params = {"$select": ",".join(DEVICE_FIELDS), "$top": 999}
        devices = []
        while url:
            data = self._request("GET", url, params=params).json()
            for item in data.get("value", []):
                device = Device.model_validate(item)
                if matches_prefix(device.display_name, prefixes):
                    devices.append(device)
            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None
        logger.info(f"Found {len(devices)} devices matching {prefixes}")
        return devices

    def delete_device(self, object_id: str) -> None:
        self._request("DELETE", f"devices/{object_id}")
        logger.info(f"Deleted device {object_id}")

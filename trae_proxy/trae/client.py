"""HTTP access to the upstream IDE chat service."""
from typing import Any, Dict, List
from urllib.parse import urlsplit

import requests

from ..exceptions import UpstreamError, UpstreamUnavailableError
from ..identity import CredentialManager, DeviceRotator

CHAT_PATH = "/api/ide/v1/chat"
MODEL_LIST_PATH = "/api/ide/v1/model_list"


class UpstreamClient:
    """Build authenticated upstream calls and perform them with requests.

    Every call is stamped with a fresh access token and charged against the
    current device identity, retries included.
    """

    def __init__(
        self,
        base_url: str,
        app_id: str,
        credentials: CredentialManager,
        devices: DeviceRotator,
        *,
        ide_version: str,
        ide_version_code: str,
        connect_timeout: float = 30,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.credentials = credentials
        self.devices = devices
        self.ide_version = ide_version
        self.ide_version_code = ide_version_code
        self.connect_timeout = connect_timeout

    @property
    def host(self) -> str:
        return urlsplit(self.base_url).netloc

    def build_headers(self) -> Dict[str, str]:
        """Return identification headers for one outbound call."""
        token = self.credentials.ensure_fresh()
        device = self.devices.current_identity()
        return {
            "Content-Type": "application/json",
            "x-app-id": self.app_id,
            "x-ide-version": self.ide_version,
            "x-ide-version-code": self.ide_version_code,
            "x-ide-version-type": "stable",
            "x-device-cpu": device.cpu,
            "x-device-id": device.device_id,
            "x-machine-id": device.machine_id,
            "x-device-brand": device.brand,
            "x-device-type": device.device_type,
            "x-os-version": device.os_version,
            "x-ide-token": token,
            "accept": "*/*",
            "Connection": "keep-alive",
            "User-Agent": "",
            "Host": self.host,
        }

    def chat_request_kwargs(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Return requests.request kwargs for a streaming chat call."""
        return {
            "method": "POST",
            "url": f"{self.base_url}{CHAT_PATH}",
            "headers": self.build_headers(),
            "json": body,
            "stream": True,
            "timeout": (self.connect_timeout, None),
        }

    def _send(self, request_kwargs: Dict[str, Any]) -> requests.Response:
        try:
            resp = requests.request(**request_kwargs)
        except requests.RequestException as e:
            raise UpstreamUnavailableError(f"Upstream request failed: {e}") from e

        if resp.status_code != 200:
            try:
                body = resp.text
            finally:
                resp.close()
            raise UpstreamError(
                f"Upstream service returned an error: {body}", resp.status_code
            )
        return resp

    def open_chat(self, body: Dict[str, Any]) -> requests.Response:
        """POST the chat body and return the open streaming response.

        Raises:
            UpstreamUnavailableError: On transport failure
            UpstreamError: On a non-200 status
        """
        return self._send(self.chat_request_kwargs(body))

    def list_models(self) -> List[Dict[str, Any]]:
        """Return the upstream chat model catalog entries."""
        resp = self._send(
            {
                "method": "GET",
                "url": f"{self.base_url}{MODEL_LIST_PATH}",
                "params": {"type": "chat"},
                "headers": self.build_headers(),
                "timeout": self.connect_timeout,
            }
        )
        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamError(f"Upstream model list is not valid JSON: {e}", 502) from e
        configs = payload.get("model_configs") if isinstance(payload, dict) else None
        return [c for c in configs or [] if isinstance(c, dict)]

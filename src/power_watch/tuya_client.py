"""
Tuya Cloud API client wrapper.
A Tuya smart plug on the monitored feed is reported "online" only while it has
power, so polling its online flag gives the same signal as an inbound ping.
"""

from typing import Any, Dict

from tuya_connector import TuyaOpenAPI

from power_watch.log import log_error, log_event


class TuyaError(Exception):
    """Tuya API call failed or returned an unusable response."""


class TuyaClient:
    """Wrapper around Tuya OpenAPI for simplified device queries."""

    def __init__(self, endpoint: str, access_id: str, access_key: str, api: Any = None):
        """
        Initialize Tuya client.

        Args:
            endpoint: Tuya API endpoint (e.g., https://openapi.tuyaeu.com)
            access_id: Tuya Access ID
            access_key: Tuya Access Key
            api: Optional preconnected TuyaOpenAPI instance
        """
        if api is None:
            api = TuyaOpenAPI(endpoint, access_id, access_key)
            api.connect()
        self.api = api

    def get_device_online_status(self, device_id: str) -> bool:
        """
        Query device online status from Tuya Cloud.

        Args:
            device_id: Tuya device ID

        Returns:
            True if device is online, False otherwise

        Raises:
            TuyaError: If API call fails or response is invalid
        """
        response = self.api.get(f"/v1.0/devices/{device_id}")

        if not response.get("success"):
            error_msg = response.get("msg", "Unknown error")
            error_code = response.get("code", "unknown")
            raise TuyaError(f"Tuya API error: {error_code} - {error_msg}")

        result = response.get("result")
        if not result:
            raise TuyaError("Tuya API returned empty result")

        online = result.get("online")
        if online is None:
            raise TuyaError("Device online status not found in response")

        return bool(online)


class TuyaLivenessSource:
    """Turns online Tuya devices into liveness pings for their subscribers."""

    def __init__(self, client: TuyaClient, devices: Dict[str, str], on_alive):
        """
        Args:
            client: Connected TuyaClient
            devices: subscriber_id -> Tuya device id
            on_alive: Callable(subscriber_id) recording a ping
        """
        self.client = client
        self.devices = devices
        self.on_alive = on_alive

    def __call__(self) -> None:
        """Poll every configured device once; offline devices are left to the liveness timeout."""
        for subscriber_id, device_id in self.devices.items():
            try:
                online = self.client.get_device_online_status(device_id)
            except Exception as e:
                log_error("tuya_query_failed", e, subscriber_id=subscriber_id, device_id=device_id)
                continue

            log_event("tuya_query_success", level="debug", device_id=device_id, online=online)
            if online:
                try:
                    self.on_alive(subscriber_id)
                except Exception as e:
                    log_error("tuya_ping_failed", e, subscriber_id=subscriber_id)

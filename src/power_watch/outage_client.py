"""
DTEK outage source client.
Queries the per-street "getHomeNum" AJAX endpoint used by the shutdowns page.
"""

from typing import Any, Dict, Optional

import requests

from power_watch.models import StreetOutageData, normalize_bool

DEFAULT_HEADERS = {
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "Accept-Language": "uk-UA,uk;q=0.9,en-US;q=0.8,en;q=0.7",
    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
    "X-Requested-With": "XMLHttpRequest",
    "User-Agent": (
        "Mozilla/5.0 (Linux; Android 6.0; Nexus 5 Build/MRA58N) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/130.0.0.0 Mobile Safari/537.36"
    ),
}


class OutageSourceError(Exception):
    """Network failure, timeout, malformed body or a negative result from the source."""


class OutageSourceClient:
    """Thin wrapper around the DTEK AJAX endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        csrf_token: str = "",
        cookie: str = "",
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the outage source client.

        Args:
            url: AJAX endpoint (e.g., https://www.dtek-oem.com.ua/ua/ajax)
            timeout: Per-request timeout in seconds
            csrf_token: Optional X-Csrf-Token header value
            cookie: Optional Cookie header value (anti-bot session)
            session: Optional preconfigured requests session
        """
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

        origin = url.split("/ua/")[0] if "/ua/" in url else url.rstrip("/")
        self.headers = dict(DEFAULT_HEADERS, Origin=origin, Referer=f"{origin}/ua/shutdowns")
        if csrf_token:
            self.headers["X-Csrf-Token"] = csrf_token
        if cookie:
            self.headers["Cookie"] = cookie

    @staticmethod
    def build_form(city: str, street: str, house: str) -> Dict[str, str]:
        return {
            "method": "getHomeNum",
            "data[0][name]": "city",
            "data[0][value]": city,
            "data[1][name]": "street",
            "data[1][value]": street,
            "data[2][name]": "home_num",
            "data[2][value]": house,
        }

    def fetch(self, city: str, street: str, house: str = "") -> StreetOutageData:
        """
        Fetch outage data for a street.

        Args:
            city: City name as the source spells it
            street: Street name as the source spells it
            house: House number, may be empty

        Returns:
            StreetOutageData for the whole street

        Raises:
            OutageSourceError: If the request fails or the response is unusable
        """
        try:
            response = self.session.post(
                self.url,
                data=self.build_form(city, street, house),
                headers=self.headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as e:
            raise OutageSourceError(f"Outage source request failed: {e}") from e
        except ValueError as e:
            raise OutageSourceError(f"Outage source returned non-JSON body: {e}") from e

        return self.parse_response(body)

    @staticmethod
    def parse_response(body: Any) -> StreetOutageData:
        """Validate and convert the JSON body."""
        if not isinstance(body, dict):
            raise OutageSourceError("Outage source returned unexpected payload")
        if not body.get("result"):
            raise OutageSourceError("Outage source reported no result")

        raw_houses = body.get("data") or {}
        if not isinstance(raw_houses, dict):
            raise OutageSourceError("Outage source 'data' is not a mapping")

        houses = {str(k): v for k, v in raw_houses.items() if isinstance(v, dict)}
        aliases = body.get("aliases") or {}
        update_timestamp = body.get("updateTimestamp")

        return StreetOutageData(
            houses=houses,
            street_flag=normalize_bool(body.get("showCurOutageParam")),
            update_timestamp=str(update_timestamp) if update_timestamp else None,
            aliases={str(k): str(v) for k, v in aliases.items()} if isinstance(aliases, dict) else {},
        )

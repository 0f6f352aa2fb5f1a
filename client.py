"""
HTTP client for the MediFinder API.

`SessionContext` holds what the web client kept in local storage (the bearer
token and the logged-in pharmacy) and can be persisted to a JSON file.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

import config

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    token: Optional[str] = None
    pharmacy: Optional[Dict[str, Any]] = None
    path: Optional[str] = field(default=None, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def login(self, token: str, pharmacy: Dict[str, Any]):
        self.token = token
        self.pharmacy = pharmacy
        self.save()

    def clear(self):
        self.token = None
        self.pharmacy = None
        if self.path and os.path.exists(self.path):
            os.remove(self.path)

    def save(self):
        if not self.path:
            return
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump({"token": self.token, "pharmacy": self.pharmacy}, fh)

    @classmethod
    def load(cls, path: str) -> "SessionContext":
        if not os.path.exists(path):
            return cls(path=path)
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except ValueError:
            logger.warning(f"Ignoring unreadable session file {path}")
            return cls(path=path)
        return cls(token=data.get("token"), pharmacy=data.get("pharmacy"), path=path)


def api_base_url(url: Optional[str] = None) -> str:
    """Normalise a server URL so it ends with /api"""
    url = url or os.getenv("MEDIFINDER_API_URL") or f"http://localhost:{config.PORT}/api"
    url = url.rstrip("/")
    if url.startswith("http") and not url.endswith("/api"):
        url = f"{url}/api"
    return url


class MediFinderClient:
    """
    Thin wrapper over the REST API.

    Every method raises requests.HTTPError for error responses and
    requests.RequestException for transport failures.
    """

    def __init__(self, base_url: Optional[str] = None, session: Optional[SessionContext] = None,
                 http: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.base_url = api_base_url(base_url)
        self.session = session or SessionContext()
        self.http = http or requests.Session()
        self.timeout = timeout or config.HTTP_TIMEOUT

    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if self.session.token:
            headers["Authorization"] = f"Bearer {self.session.token}"
        response = self.http.request(method, f"{self.base_url}{path}", headers=headers,
                                     timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response.json()

    # Medicines
    def search_medicines(self, q: str) -> List[Dict[str, Any]]:
        return self._request("GET", "/medicines/search", params={"q": q})

    def get_medicine(self, medicine_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/medicines/{medicine_id}")

    def pharmacy_medicines(self, pharmacy_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/medicines/pharmacy/{pharmacy_id}")

    def create_medicine(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/medicines", json=data)

    def create_medicines(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._request("POST", "/medicines/bulk", json={"items": items})

    def update_medicine(self, medicine_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", f"/medicines/{medicine_id}", json=changes)

    def delete_medicine(self, medicine_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/medicines/{medicine_id}")

    # Reservations
    def create_reservation(self, medicine_id: str, pharmacy_id: str, customer_name: str,
                           customer_phone: str) -> Dict[str, Any]:
        return self._request("POST", "/reservations", json={
            "medicineId": medicine_id,
            "pharmacyId": pharmacy_id,
            "customerName": customer_name,
            "customerPhone": customer_phone,
        })

    def pharmacy_reservations(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/reservations/pharmacy")

    def update_reservation_status(self, reservation_id: str, status: str) -> Dict[str, Any]:
        return self._request("PATCH", f"/reservations/{reservation_id}/status", json={"status": status})

    # AI
    def recommend(self, disease: str) -> str:
        return self._request("POST", "/ai/recommend", json={"disease": disease})["recommendations"]

    def analyze_prescription(self, image_b64: str) -> str:
        return self._request("POST", "/ai/analyze-prescription", json={"image": image_b64})["medicines"]

    def parse_price_slip(self, image_b64: str) -> List[Dict[str, Any]]:
        return self._request("POST", "/ai/parse-price-slip", json={"image": image_b64})["items"]

    def validate_medicine(self, name: str) -> Dict[str, Any]:
        return self._request("POST", "/ai/validate", json={"name": name})

    def describe_medicine(self, name: str) -> str:
        return self._request("POST", "/ai/describe", json={"name": name})["description"]

    # Geocoding
    def reverse_geocode(self, lat: float, lon: float) -> str:
        return self._request("GET", "/geocode/reverse", params={"lat": lat, "lon": lon})["address"]

    # Auth
    def register(self, name: str, address: str, contact: str, operating_hours: str,
                 location: Optional[Dict[str, float]] = None) -> Dict[str, Any]:
        data = self._request("POST", "/auth/register", json={
            "name": name,
            "address": address,
            "contact": contact,
            "location": location,
            "operatingHours": operating_hours,
        })
        self.session.login(data["token"], data["pharmacy"])
        return data["pharmacy"]

    def login_by_phone(self, contact: str) -> Optional[Dict[str, Any]]:
        """
        Log in with the pharmacy's phone number.

        Returns None when no pharmacy uses that number, which callers take
        as the cue to show registration.
        """
        try:
            data = self._request("POST", "/auth/login-by-phone", json={"contact": contact})
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                return None
            raise
        self.session.login(data["token"], data["pharmacy"])
        return data["pharmacy"]

    def logout(self):
        self.session.clear()

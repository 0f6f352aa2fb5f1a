"""
Consumer search workflow.

The search is an explicit state machine. Each transition is a pure function
taking a SearchContext and returning a new one; SearchWorkflow drives them
against the API client and a device locator.

    IDLE -> VALIDATING -> [CONFIRMING] -> LOCATING_DEVICE -> SEARCHING -> RESULTS | NO_RESULTS | ERROR
    IDLE -> RECOMMENDING -> [CHOOSING] -> LOCATING_DEVICE -> ...
"""
import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from math import asin, cos, radians, sin, sqrt
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from schemas import StockStatus

logger = logging.getLogger(__name__)


class SearchState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CONFIRMING = "confirming"
    RECOMMENDING = "recommending"
    CHOOSING = "choosing"
    LOCATING_DEVICE = "locating_device"
    SEARCHING = "searching"
    RESULTS = "results"
    NO_RESULTS = "no_results"
    ERROR = "error"


SORT_KEYS = ("price", "distance", "availability")

# States a new search may start from
READY_STATES = {
    SearchState.IDLE, SearchState.CONFIRMING, SearchState.CHOOSING,
    SearchState.RESULTS, SearchState.NO_RESULTS, SearchState.ERROR,
}

LOCATION_UNSUPPORTED = "Geolocation is not supported by your browser."
LOCATION_DENIED = "Location access denied. Please allow location access to find nearby pharmacies."
LOCATION_UNAVAILABLE = "Could not get your location. Please enable location services in your browser settings."
SEARCH_FAILED = "Could not fetch medicine data from server."


class InvalidTransition(ValueError):
    pass


class GeolocationError(Exception):
    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"

    def __init__(self, code: str = UNAVAILABLE, message: Optional[str] = None):
        self.code = code
        super().__init__(message or geolocation_message(code))


def geolocation_message(code: str) -> str:
    if code == GeolocationError.UNSUPPORTED:
        return LOCATION_UNSUPPORTED
    if code == GeolocationError.PERMISSION_DENIED:
        return LOCATION_DENIED
    return LOCATION_UNAVAILABLE


@dataclass(frozen=True)
class PharmacyResult:
    pharmacy_id: str
    name: str
    address: str
    phone: str
    lat: Optional[float]
    lon: Optional[float]
    medicine_id: str
    medicine: str
    price: float
    stock: str
    distance: float
    is_best_option: bool = False


@dataclass(frozen=True)
class SearchContext:
    state: SearchState = SearchState.IDLE
    query: str = ""
    status_text: str = ""
    suggestion: Optional[str] = None
    original: Optional[str] = None
    choices: Tuple[str, ...] = ()
    medicine: Optional[str] = None
    location: Optional[Tuple[float, float]] = None
    results: Tuple[PharmacyResult, ...] = ()
    sort_key: str = "distance"
    description: str = ""


def _expect(ctx: SearchContext, *states: SearchState):
    if ctx.state not in states:
        allowed = ", ".join(s.value for s in states)
        raise InvalidTransition(f"Cannot do that while {ctx.state.value} (expected {allowed})")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great circle distance between two points on the earth (km)"""
    lon1, lat1, lon2, lat2 = map(radians, [lon1, lat1, lon2, lat2])
    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * asin(sqrt(a)) * 6371


def sort_results(results, sort_key: str = "distance") -> List[PharmacyResult]:
    """
    Order results by the sort key. Best-option results always come first;
    "availability" orders like "distance" because only available stock is shown.
    """
    if sort_key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {sort_key}")
    field_name = "price" if sort_key == "price" else "distance"
    return sorted(results, key=lambda r: (not r.is_best_option, getattr(r, field_name)))


# -----------------------------
# Transitions
# -----------------------------

def reset(ctx: SearchContext) -> SearchContext:
    return SearchContext(sort_key=ctx.sort_key)


def set_sort_key(ctx: SearchContext, sort_key: str) -> SearchContext:
    if sort_key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {sort_key}")
    return replace(ctx, sort_key=sort_key, results=tuple(sort_results(ctx.results, sort_key)))


def begin_medicine_search(ctx: SearchContext, query: str) -> SearchContext:
    _expect(ctx, *READY_STATES)
    query = (query or "").strip()
    if not query:
        return replace(reset(ctx), status_text="Please enter a medicine name to search.")
    return replace(reset(ctx), state=SearchState.VALIDATING, query=query,
                   status_text=f"Validating '{query}'...")


def commit_medicine(ctx: SearchContext, medicine: str) -> SearchContext:
    return replace(ctx, state=SearchState.LOCATING_DEVICE, medicine=medicine, suggestion=None,
                   original=None, choices=(), results=(), status_text="Getting your location...")


def found_locally(ctx: SearchContext) -> SearchContext:
    _expect(ctx, SearchState.VALIDATING)
    return commit_medicine(ctx, ctx.query)


def apply_validation(ctx: SearchContext, validation: Dict[str, Any]) -> SearchContext:
    """Apply an AI validation result ({valid, correctedName, reason})"""
    _expect(ctx, SearchState.VALIDATING)
    if not validation.get("valid"):
        reason = validation.get("reason") or (
            f"Sorry, '{ctx.query}' doesn't seem to be a recognized medicine. "
            "Please check the spelling and try again.")
        return replace(ctx, state=SearchState.IDLE, status_text=reason)

    suggestion = validation.get("correctedName") or ctx.query
    if suggestion.lower() == ctx.query.lower():
        return commit_medicine(ctx, suggestion)
    return replace(ctx, state=SearchState.CONFIRMING, suggestion=suggestion, original=ctx.query,
                   status_text=f"We think you meant '{suggestion}'.")


def validation_failed(ctx: SearchContext) -> SearchContext:
    _expect(ctx, SearchState.VALIDATING)
    return replace(ctx, state=SearchState.CONFIRMING, suggestion=None, original=ctx.query,
                   status_text=f"Couldn't validate '{ctx.query}'. You can search for it anyway.")


def confirm(ctx: SearchContext, choice: str) -> SearchContext:
    _expect(ctx, SearchState.CONFIRMING)
    if choice not in (ctx.suggestion, ctx.original) or not choice:
        raise InvalidTransition(f"'{choice}' is not one of the offered names")
    return commit_medicine(ctx, choice)


def begin_disease_search(ctx: SearchContext, disease: str) -> SearchContext:
    _expect(ctx, *READY_STATES)
    disease = (disease or "").strip()
    if not disease:
        return replace(reset(ctx), status_text="Please enter a disease or symptom to search.")
    return replace(reset(ctx), state=SearchState.RECOMMENDING, query=disease,
                   status_text=f"Finding medicine recommendations for '{disease}'...")


def apply_recommendations(ctx: SearchContext, recommendations: str) -> SearchContext:
    _expect(ctx, SearchState.RECOMMENDING)
    choices = [m.strip() for m in (recommendations or "").split(",") if m.strip()]
    if not choices:
        return replace(ctx, state=SearchState.NO_RESULTS, status_text=(
            f"No specific medicine recommendations found for '{ctx.query}'. "
            "Try searching for a medicine directly."))
    if len(choices) == 1:
        return commit_medicine(ctx, choices[0])
    return replace(ctx, state=SearchState.CHOOSING, choices=tuple(choices),
                   status_text=f"AI recommended the following for '{ctx.query}'. Please choose one.")


def recommendations_failed(ctx: SearchContext) -> SearchContext:
    _expect(ctx, SearchState.RECOMMENDING)
    return replace(ctx, state=SearchState.ERROR, status_text="An error occurred. Please try your search again.")


def choose(ctx: SearchContext, medicine: str) -> SearchContext:
    _expect(ctx, SearchState.CHOOSING)
    if medicine not in ctx.choices:
        raise InvalidTransition(f"'{medicine}' is not one of the recommended medicines")
    return commit_medicine(ctx, medicine)


def apply_location(ctx: SearchContext, lat: float, lon: float) -> SearchContext:
    _expect(ctx, SearchState.LOCATING_DEVICE)
    return replace(ctx, state=SearchState.SEARCHING, location=(lat, lon),
                   status_text=f"Finding pharmacies with {ctx.medicine} near you...")


def location_failed(ctx: SearchContext, message: str) -> SearchContext:
    _expect(ctx, SearchState.LOCATING_DEVICE)
    return replace(ctx, state=SearchState.ERROR, status_text=message)


def _to_result(medicine: Dict[str, Any], location: Optional[Tuple[float, float]], rng: random.Random) -> PharmacyResult:
    pharmacy = medicine.get("pharmacy") or {}
    point = pharmacy.get("location") or {}
    lat, lon = point.get("lat"), point.get("lon")
    if location is not None and lat is not None and lon is not None:
        distance = round(haversine_km(location[0], location[1], float(lat), float(lon)), 2)
    else:
        distance = round(rng.random() * 5, 2)
    return PharmacyResult(
        pharmacy_id=pharmacy.get("id") or medicine.get("pharmacyId", ""),
        name=pharmacy.get("name", "Unknown"),
        address=pharmacy.get("address", ""),
        phone=pharmacy.get("contact", ""),
        lat=lat,
        lon=lon,
        medicine_id=medicine.get("id", ""),
        medicine=medicine.get("name", ""),
        price=float(medicine.get("price", 0)),
        stock=medicine.get("stock", ""),
        distance=distance,
        is_best_option=bool(pharmacy.get("isBestOption", False)),
    )


def apply_search_results(ctx: SearchContext, medicines: List[Dict[str, Any]],
                         rng: Optional[random.Random] = None) -> SearchContext:
    """Keep only available stock, attach distances and sort by the active key"""
    _expect(ctx, SearchState.SEARCHING)
    rng = rng or random.Random()
    results = [_to_result(m, ctx.location, rng) for m in medicines
               if m.get("stock") == StockStatus.AVAILABLE.value]
    if not results:
        return replace(ctx, state=SearchState.NO_RESULTS, results=(),
                       status_text=f"No pharmacies near you have {ctx.medicine} available right now.")
    return replace(ctx, state=SearchState.RESULTS, status_text="",
                   results=tuple(sort_results(results, ctx.sort_key)))


def search_failed(ctx: SearchContext) -> SearchContext:
    _expect(ctx, SearchState.SEARCHING)
    return replace(ctx, state=SearchState.ERROR, status_text=SEARCH_FAILED)


# -----------------------------
# Driver
# -----------------------------

Locator = Callable[[], Tuple[float, float]]


class SearchWorkflow:
    """
    Runs the search steps against a MediFinderClient-like API and a device
    locator. The locator returns (lat, lon) or raises GeolocationError.
    """

    def __init__(self, api, locator: Optional[Locator] = None, rng: Optional[random.Random] = None):
        self.api = api
        self.locator = locator
        self.rng = rng or random.Random()
        self.ctx = SearchContext()

    @property
    def state(self) -> SearchState:
        return self.ctx.state

    def reset(self) -> SearchContext:
        self.ctx = reset(self.ctx)
        return self.ctx

    def sort_by(self, sort_key: str) -> SearchContext:
        self.ctx = set_sort_key(self.ctx, sort_key)
        return self.ctx

    def search_medicine(self, query: str) -> SearchContext:
        self.ctx = begin_medicine_search(self.ctx, query)
        if self.ctx.state != SearchState.VALIDATING:
            return self.ctx

        if self._available_locally(self.ctx.query):
            self.ctx = found_locally(self.ctx)
            return self._locate_and_search()

        try:
            validation = self.api.validate_medicine(self.ctx.query)
        except requests.RequestException as e:
            logger.error(f"Medicine validation failed: {str(e)}")
            self.ctx = validation_failed(self.ctx)
            return self.ctx

        self.ctx = apply_validation(self.ctx, validation)
        if self.ctx.state == SearchState.LOCATING_DEVICE:
            return self._locate_and_search()
        return self.ctx

    def confirm(self, choice: str) -> SearchContext:
        self.ctx = confirm(self.ctx, choice)
        return self._locate_and_search()

    def search_disease(self, disease: str) -> SearchContext:
        self.ctx = begin_disease_search(self.ctx, disease)
        if self.ctx.state != SearchState.RECOMMENDING:
            return self.ctx
        try:
            recommendations = self.api.recommend(self.ctx.query)
        except requests.RequestException as e:
            logger.error(f"Recommendation failed: {str(e)}")
            self.ctx = recommendations_failed(self.ctx)
            return self.ctx

        self.ctx = apply_recommendations(self.ctx, recommendations)
        if self.ctx.state == SearchState.LOCATING_DEVICE:
            return self._locate_and_search()
        return self.ctx

    def choose(self, medicine: str) -> SearchContext:
        self.ctx = choose(self.ctx, medicine)
        return self._locate_and_search()

    def search_prescription(self, image_b64: str) -> SearchContext:
        _expect(self.ctx, *READY_STATES)
        try:
            names = self.api.analyze_prescription(image_b64)
        except requests.RequestException as e:
            logger.error(f"Prescription analysis failed: {str(e)}")
            self.ctx = replace(reset(self.ctx), state=SearchState.ERROR,
                               status_text="Could not read the prescription. Please try again.")
            return self.ctx
        candidates = [n.strip() for n in (names or "").split(",") if n.strip()]
        if not candidates:
            self.ctx = replace(reset(self.ctx), state=SearchState.NO_RESULTS,
                               status_text="No medicine could be identified in the prescription.")
            return self.ctx
        return self.search_medicine(candidates[0])

    def _available_locally(self, name: str) -> bool:
        try:
            medicines = self.api.search_medicines(name)
        except requests.RequestException as e:
            logger.warning(f"Inventory check for '{name}' failed: {str(e)}")
            return False
        return any((m.get("name") or "").lower() == name.lower() for m in medicines)

    def _locate_and_search(self) -> SearchContext:
        if self.locator is None:
            self.ctx = location_failed(self.ctx, LOCATION_UNSUPPORTED)
            return self.ctx
        try:
            lat, lon = self.locator()
        except GeolocationError as e:
            logger.error(f"Geolocation error: {str(e)}")
            self.ctx = location_failed(self.ctx, str(e))
            return self.ctx
        self.ctx = apply_location(self.ctx, lat, lon)

        try:
            medicines = self.api.search_medicines(self.ctx.medicine)
        except requests.RequestException as e:
            logger.error(f"Failed to find pharmacies: {str(e)}")
            self.ctx = search_failed(self.ctx)
            return self.ctx
        self.ctx = apply_search_results(self.ctx, medicines, self.rng)

        if self.ctx.state == SearchState.RESULTS:
            try:
                self.ctx = replace(self.ctx, description=self.api.describe_medicine(self.ctx.medicine))
            except requests.RequestException as e:
                logger.warning(f"No description for {self.ctx.medicine}: {str(e)}")
        return self.ctx

"""
Generative AI gateway for MediFinder.

Thin wrapper around the Gemini generateContent REST endpoint. When no API key
is configured every operation answers with deterministic mock data, so the
rest of the system works offline.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

import config
from schemas import MedicineValidation, PriceSlipItem

logger = logging.getLogger(__name__)

QUOTA_EXCEEDED_MESSAGE = "API Quota Exceeded. Please check your plan and billing details, or try again later."
PRICE_SLIP_FAILED_MESSAGE = "Could not parse image with AI service. Please ensure the image is clear and try again."

DEFAULT_COORDINATES = (12.9716, 77.5946)

KNOWN_MEDICINES = [
    'paracetamol', 'ibuprofen', 'metformin', 'aspirin', 'atorvastatin',
    'amoxicillin', 'cetirizine', 'metformin 500mg', 'dolo 650', 'crocin 650',
]
PROPER_NAMES = {'dolo 650': 'Dolo 650', 'crocin 650': 'Crocin 650'}
MISSPELLINGS = {'paracetmol': 'Paracetamol'}


class AIServiceError(Exception):
    pass


class AIQuotaExceededError(AIServiceError):
    pass


def is_configured() -> bool:
    return bool(config.GEMINI_API_KEY)


def _generate(parts: List[Dict[str, Any]], json_mode: bool = False) -> str:
    """Send one generateContent request and return the text of the first candidate"""
    url = f"{config.GEMINI_API_BASE}/models/{config.GEMINI_MODEL}:generateContent"
    body: Dict[str, Any] = {"contents": [{"parts": parts}]}
    if json_mode:
        body["generationConfig"] = {"responseMimeType": "application/json"}

    try:
        response = requests.post(
            url,
            params={"key": config.GEMINI_API_KEY},
            json=body,
            timeout=config.HTTP_TIMEOUT,
        )
    except requests.RequestException as e:
        raise AIServiceError(f"Gemini request failed: {str(e)}") from e

    if response.status_code == 429 or "RESOURCE_EXHAUSTED" in response.text:
        raise AIQuotaExceededError(QUOTA_EXCEEDED_MESSAGE)
    if response.status_code != 200:
        raise AIServiceError(f"Gemini API error: {response.status_code}")

    try:
        data = response.json()
        return data["candidates"][0]["content"]["parts"][0]["text"].strip()
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise AIServiceError("Gemini API returned an unexpected payload") from e


def _image_part(image_b64: str) -> Dict[str, Any]:
    return {"inline_data": {"mime_type": "image/jpeg", "data": image_b64}}


def split_recommendations(text: str) -> List[str]:
    return [name.strip() for name in (text or "").split(",") if name.strip()]


# -----------------------------
# Medicine names
# -----------------------------

def _mock_validation(medicine_name: str) -> MedicineValidation:
    lower_name = medicine_name.lower()
    if lower_name in KNOWN_MEDICINES:
        proper_name = PROPER_NAMES.get(lower_name) or medicine_name[:1].upper() + medicine_name[1:].lower()
        return MedicineValidation(valid=True, corrected_name=proper_name, reason="")
    if lower_name in MISSPELLINGS:
        return MedicineValidation(valid=True, corrected_name=MISSPELLINGS[lower_name], reason="Corrected spelling.")
    if len(medicine_name) < 3:
        return MedicineValidation(valid=False, corrected_name="",
                                  reason=f'"{medicine_name}" is too short to be a valid medicine name.')
    return MedicineValidation(
        valid=False,
        corrected_name="",
        reason=f'"{medicine_name}" does not seem to be a valid medicine name. Please check the spelling.',
    )


def validate_medicine_name(medicine_name: str) -> MedicineValidation:
    """
    Check whether a user's input is a medicine name, correcting common
    misspellings.

    Raises AIServiceError when the model cannot be reached. Output that is not
    a JSON object is treated as valid and unchanged so the user is not blocked.
    """
    if not is_configured():
        return _mock_validation(medicine_name)

    prompt = f"""You are a helpful medical assistant. The user has entered a medicine name. Please validate it.
User input: "{medicine_name}"
Is this a recognized medicine name? If it is a common misspelling, correct it.
Provide a response in JSON format with three fields:
1. "valid": a boolean (true if it's a real medicine or a correctable misspelling, false otherwise).
2. "correctedName": a string with the corrected, properly capitalized name if valid, otherwise an empty string.
3. "reason": a brief explanation for the user, e.g., "Corrected spelling from 'paracetmol'." or "'asdfg' does not appear to be a medicine." if invalid.
"""
    text = _generate([{"text": prompt}], json_mode=True)
    unchanged = MedicineValidation(valid=True, corrected_name=medicine_name, reason="")
    if not (text.startswith("{") and text.endswith("}")):
        logger.warning(f"Validation for '{medicine_name}' was not JSON, proceeding unchanged")
        return unchanged
    try:
        return MedicineValidation.model_validate(json.loads(text))
    except ValueError:
        logger.warning(f"Validation for '{medicine_name}' was malformed, proceeding unchanged")
        return unchanged


def get_medicine_recommendations(disease_query: str) -> str:
    """Comma-separated medicine names for a disease or symptom ("" when none)"""
    if not is_configured():
        lower_query = disease_query.lower()
        if "fever" in lower_query:
            return "Paracetamol, Ibuprofen, Dolo 650"
        if "headache" in lower_query:
            return "Paracetamol, Ibuprofen, Aspirin"
        return ""

    prompt = (
        "Based on the user's query for a disease or symptom, recommend relevant medicine names. "
        "List common over-the-counter or prescription medicines. Provide the response as a single, "
        "comma-separated string of the top 1-3 medicine names. For example, for 'headache', return "
        f"'Paracetamol, Ibuprofen'. User query: '{disease_query}'"
    )
    try:
        return _generate([{"text": prompt}])
    except AIServiceError as e:
        logger.error(f"Error getting medicine recommendations: {str(e)}")
        return ""


def describe_medicine(medicine_name: str) -> str:
    if not is_configured():
        lower_name = medicine_name.lower()
        if "paracetamol" in lower_name or "dolo 650" in lower_name:
            return ("Paracetamol, the active ingredient in Dolo 650, is a common pain reliever and fever reducer. "
                    "It is used to treat many conditions such as headaches, muscle aches, arthritis, backache, "
                    "toothaches, colds, and fevers.")
        return f"Information about {medicine_name} would be shown here."

    prompt = (
        f'Provide a brief, simple, one-paragraph description for the medicine "{medicine_name}". '
        "Write it for a layperson, focusing on its common use."
    )
    try:
        return _generate([{"text": prompt}])
    except AIServiceError as e:
        logger.error(f"Error getting description for {medicine_name}: {str(e)}")
        return f"Could not load information for {medicine_name}."


def suggest_alternative(medicine_name: str) -> str:
    """A common substitute for the medicine, or "" when none is known"""
    if not is_configured():
        lower_name = medicine_name.lower()
        if "paracetamol" in lower_name:
            return "Ibuprofen"
        if "dolo 650" in lower_name:
            return "Crocin 650"
        if "ibuprofen" in lower_name:
            return "Paracetamol"
        return ""

    prompt = (
        f'What is a single, common, and widely available alternative or substitute medicine for "{medicine_name}"? '
        'Provide only the name of the medicine. For example, for "Aspirin", a good answer would be "Ibuprofen".'
    )
    try:
        return _generate([{"text": prompt}])
    except AIServiceError as e:
        logger.error(f"Error getting alternative for {medicine_name}: {str(e)}")
        return ""


# -----------------------------
# Images
# -----------------------------

def analyze_prescription(image_b64: str) -> str:
    """Comma-separated medicine names read from a prescription photo"""
    if not is_configured():
        return "Metformin 500mg"

    prompt = ("Analyze this prescription and list the medicine names found. "
              "Return only a comma-separated list of medicine names.")
    return _generate([{"text": prompt}, _image_part(image_b64)])


def parse_price_slip(image_b64: str) -> List[PriceSlipItem]:
    """
    Read medicine names and prices from a photographed price list.

    Raises AIQuotaExceededError (message meant for the user as-is) or
    AIServiceError.
    """
    if not is_configured():
        return [
            PriceSlipItem(name="Dolo 650", price=31.00),
            PriceSlipItem(name="Aspirin 75mg", price=15.50),
            PriceSlipItem(name="Cetirizine 10mg", price=25.00),
        ]

    prompt = (
        "Analyze this image of a medicine price list. Extract each medicine's name and its price. "
        "Ignore any item that isn't a medicine. Provide the response as a JSON array of objects, where each "
        'object has "medicineName" (string) and "price" (number). '
        'Example: [{"medicineName": "Paracetamol 500mg", "price": 30.50}]'
    )
    try:
        text = _generate([_image_part(image_b64), {"text": prompt}], json_mode=True)
    except AIQuotaExceededError:
        raise
    except AIServiceError as e:
        logger.error(f"Error parsing price slip: {str(e)}")
        raise AIServiceError(PRICE_SLIP_FAILED_MESSAGE) from e

    if not (text.startswith("[") and text.endswith("]")):
        logger.error(f"Price slip response was not a JSON array: {text[:80]}")
        return []
    try:
        entries = json.loads(text)
    except ValueError:
        logger.error("Price slip response was not valid JSON")
        return []
    items = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        name = entry.get("medicineName") or entry.get("name")
        price = entry.get("price")
        try:
            price = float(price)
        except (TypeError, ValueError):
            logger.warning(f"Skipping price slip entry with unreadable price: {entry}")
            continue
        if not name or price < 0:
            continue
        items.append(PriceSlipItem(name=str(name), price=price))
    return items


# -----------------------------
# Locations
# -----------------------------

def address_from_coordinates(lat: float, lon: float) -> str:
    """Ask the model for an address; raises AIServiceError when unavailable"""
    if not is_configured():
        raise AIServiceError("Gemini API key not configured")
    prompt = (
        f"Provide the full, formatted street address for the following GPS coordinates: latitude {lat}, "
        f"longitude {lon}. The address should be suitable for display and include street, city, state, and "
        "postal code if available. For example: 'MG Road, Bengaluru, Karnataka 560001, India'."
    )
    return _generate([{"text": prompt}])


def coordinates_from_address(address: str) -> Tuple[float, float]:
    """Latitude and longitude for an address, DEFAULT_COORDINATES when unknown"""
    if not is_configured():
        return DEFAULT_COORDINATES

    prompt = f"""You are a geocoding expert. Provide the latitude and longitude for the following address: "{address}".
Return the response in JSON format with two fields: "lat" (number) and "lon" (number).
Example: for "1600 Amphitheatre Parkway, Mountain View, CA", return {{"lat": 37.422, "lon": -122.084}}.
"""
    try:
        text = _generate([{"text": prompt}], json_mode=True)
        result: Optional[Dict[str, Any]] = json.loads(text) if text.startswith("{") else None
        if result and result.get("lat") is not None and result.get("lon") is not None:
            return float(result["lat"]), float(result["lon"])
        logger.error(f"Geocoding did not return valid JSON for address: {address}")
    except (AIServiceError, ValueError) as e:
        logger.error(f"Error geocoding address with Gemini: {str(e)}")
    return DEFAULT_COORDINATES

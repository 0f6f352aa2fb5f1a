import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

import ai_service
import config
import database
import geocoding
from auth import create_token, current_pharmacy_id, warn_if_default_secret
from database import create_document, get_documents, take_one_unit
from logging_config import configure_logging
from schemas import (
    AuthResponse, BulkMedicineCreate, GeoPoint, ImageRequest, LoginByPhoneRequest, Medicine,
    MedicineCreate, MedicineNameRequest, MedicineOut, MedicineUpdate, MedicineValidation,
    Pharmacy, PharmacyOut, RecommendRequest, RegisterRequest, Reservation, ReservationCreate,
    ReservationOut, ReservationStatus, ReservationStatusUpdate, can_transition,
)

configure_logging(config.LOG_LEVEL)
logger = logging.getLogger(__name__)
warn_if_default_secret()

app = FastAPI(title="MediFinder API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Helpers

def require_db():
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id format")


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def pharmacy_out(doc: Dict[str, Any]) -> PharmacyOut:
    return PharmacyOut.model_validate(serialize(doc))


def medicine_out(doc: Dict[str, Any], pharmacy: Optional[Dict[str, Any]] = None) -> MedicineOut:
    out = MedicineOut.model_validate(serialize(doc))
    if pharmacy:
        out.pharmacy = pharmacy_out(pharmacy)
    return out


def load_by_ids(collection: str, ids: List[str]) -> Dict[str, Dict[str, Any]]:
    """Fetch documents for a set of string ids, keyed by id; malformed ids are skipped"""
    oids = []
    for value in set(ids):
        if ObjectId.is_valid(value):
            oids.append(ObjectId(value))
    if not oids:
        return {}
    return {str(d["_id"]): d for d in require_db()[collection].find({"_id": {"$in": oids}})}


def with_pharmacies(medicines: List[Dict[str, Any]]) -> List[MedicineOut]:
    pharmacies = load_by_ids("pharmacy", [m.get("pharmacy_id") for m in medicines])
    return [medicine_out(m, pharmacies.get(m.get("pharmacy_id"))) for m in medicines]


def reservation_out(doc: Dict[str, Any], medicine: Optional[Dict[str, Any]] = None) -> ReservationOut:
    out = ReservationOut.model_validate(serialize(doc))
    if medicine:
        out.medicine = medicine_out(medicine)
    return out


# Healthcheck
@app.get("/")
def read_root():
    return {"message": "MediFinder API is running..."}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    db = database.db
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ Error: {str(e)[:80]}"
    return response

# -----------------------------
# Auth
# -----------------------------

@app.post("/api/auth/register", response_model=AuthResponse, status_code=201)
def register(payload: RegisterRequest):
    db = require_db()
    if db["pharmacy"].find_one({"contact": payload.contact}):
        raise HTTPException(status_code=400, detail="A pharmacy with this contact is already registered")

    location = payload.location
    if location is None:
        lat, lon = geocoding.geocode_address(payload.address)
        location = GeoPoint(lat=lat, lon=lon)

    pharmacy = Pharmacy(
        name=payload.name,
        address=payload.address,
        location=location,
        contact=payload.contact,
        operating_hours=payload.operating_hours,
        is_open_24x7=payload.is_open_24x7,
    )
    pharmacy_id = create_document("pharmacy", pharmacy)
    logger.info(f"Registered pharmacy {pharmacy_id} ({payload.name})")
    doc = db["pharmacy"].find_one({"_id": ObjectId(pharmacy_id)})
    return AuthResponse(pharmacy=pharmacy_out(doc), token=create_token(pharmacy_id, payload.contact))


@app.post("/api/auth/login-by-phone", response_model=AuthResponse)
def login_by_phone(payload: LoginByPhoneRequest):
    db = require_db()
    doc = db["pharmacy"].find_one({"contact": payload.contact})
    if not doc:
        raise HTTPException(status_code=404, detail="Pharmacy not found")
    pharmacy_id = str(doc["_id"])
    return AuthResponse(pharmacy=pharmacy_out(doc), token=create_token(pharmacy_id, doc.get("contact")))


@app.get("/api/auth/me", response_model=PharmacyOut)
def current_pharmacy(pharmacy_id: str = Depends(current_pharmacy_id)):
    doc = require_db()["pharmacy"].find_one({"_id": oid(pharmacy_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Pharmacy not found")
    return pharmacy_out(doc)

# -----------------------------
# Medicines
# -----------------------------

@app.get("/api/medicines/search", response_model=List[MedicineOut])
def search_medicines(q: Optional[str] = None):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    require_db()
    medicines = get_documents("medicine", {"name": {"$regex": re.escape(q.strip()), "$options": "i"}})
    return with_pharmacies(medicines)


@app.get("/api/medicines/pharmacy/{pharmacy_id}", response_model=List[MedicineOut])
def list_pharmacy_medicines(pharmacy_id: str):
    require_db()
    return [medicine_out(m) for m in get_documents("medicine", {"pharmacy_id": pharmacy_id}, sort=[("name", 1)])]


@app.get("/api/medicines/{medicine_id}", response_model=MedicineOut)
def get_medicine(medicine_id: str):
    doc = require_db()["medicine"].find_one({"_id": oid(medicine_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Medicine not found")
    return with_pharmacies([doc])[0]


@app.post("/api/medicines", response_model=MedicineOut, status_code=201)
def create_medicine(payload: MedicineCreate, pharmacy_id: str = Depends(current_pharmacy_id)):
    db = require_db()
    medicine_id = create_document("medicine", Medicine(pharmacy_id=pharmacy_id, **payload.model_dump()))
    return medicine_out(db["medicine"].find_one({"_id": ObjectId(medicine_id)}))


@app.post("/api/medicines/bulk", response_model=List[MedicineOut], status_code=201)
def create_medicines_bulk(payload: BulkMedicineCreate, pharmacy_id: str = Depends(current_pharmacy_id)):
    require_db()
    ids = [create_document("medicine", Medicine(pharmacy_id=pharmacy_id, **item.model_dump()))
           for item in payload.items]
    logger.info(f"Pharmacy {pharmacy_id} uploaded {len(ids)} medicines")
    docs = load_by_ids("medicine", ids)
    return [medicine_out(docs[i]) for i in ids if i in docs]


@app.patch("/api/medicines/{medicine_id}", response_model=MedicineOut)
def update_medicine(medicine_id: str, payload: MedicineUpdate, pharmacy_id: str = Depends(current_pharmacy_id)):
    db = require_db()
    owned = {"_id": oid(medicine_id), "pharmacy_id": pharmacy_id}
    changes = payload.model_dump(exclude_unset=True)
    if changes:
        changes["updated_at"] = datetime.now(timezone.utc)
        db["medicine"].update_one(owned, {"$set": changes})
    doc = db["medicine"].find_one(owned)
    if not doc:
        raise HTTPException(status_code=404, detail="Medicine not found")
    return medicine_out(doc)


@app.delete("/api/medicines/{medicine_id}")
def delete_medicine(medicine_id: str, pharmacy_id: str = Depends(current_pharmacy_id)):
    res = require_db()["medicine"].delete_one({"_id": oid(medicine_id), "pharmacy_id": pharmacy_id})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Medicine not found")
    return {"id": medicine_id, "deleted": True}

# -----------------------------
# Reservations
# -----------------------------

NOT_AVAILABLE = "Medicine not available in requested pharmacy"


@app.post("/api/reservations", response_model=ReservationOut, status_code=201)
def create_reservation(payload: ReservationCreate):
    db = require_db()
    medicine_oid = oid(payload.medicine_id)
    medicine = db["medicine"].find_one({"_id": medicine_oid})
    if not medicine or int(medicine.get("quantity", 0)) <= 0:
        raise HTTPException(status_code=400, detail=NOT_AVAILABLE)
    if payload.pharmacy_id and payload.pharmacy_id != medicine["pharmacy_id"]:
        raise HTTPException(status_code=400, detail=NOT_AVAILABLE)

    # Another request may have taken the last unit since the read above
    if take_one_unit(medicine_oid) is None:
        raise HTTPException(status_code=400, detail=NOT_AVAILABLE)

    now = datetime.now(timezone.utc)
    reservation = Reservation(
        medicine_id=payload.medicine_id,
        pharmacy_id=medicine["pharmacy_id"],
        customer_name=payload.customer_name,
        customer_phone=payload.customer_phone,
        reservation_time=now,
        expiry_time=now + timedelta(hours=config.RESERVATION_HOLD_HOURS),
    )
    reservation_id = create_document("reservation", reservation)
    logger.info(f"Reservation {reservation_id} created for medicine {payload.medicine_id}")
    return reservation_out(db["reservation"].find_one({"_id": ObjectId(reservation_id)}))


@app.get("/api/reservations/pharmacy", response_model=List[ReservationOut])
def list_pharmacy_reservations(pharmacy_id: str = Depends(current_pharmacy_id)):
    require_db()
    reservations = get_documents("reservation", {"pharmacy_id": pharmacy_id},
                                 sort=[("created_at", -1), ("_id", -1)])
    medicines = load_by_ids("medicine", [r.get("medicine_id") for r in reservations])
    return [reservation_out(r, medicines.get(r.get("medicine_id"))) for r in reservations]


@app.patch("/api/reservations/{reservation_id}/status", response_model=ReservationOut)
def update_reservation_status(reservation_id: str, payload: ReservationStatusUpdate,
                              pharmacy_id: str = Depends(current_pharmacy_id)):
    db = require_db()
    owned = {"_id": oid(reservation_id), "pharmacy_id": pharmacy_id}
    doc = db["reservation"].find_one(owned)
    if not doc:
        raise HTTPException(status_code=404, detail="Reservation not found")

    current = doc.get("status", ReservationStatus.PENDING.value)
    if not can_transition(current, payload.status):
        raise HTTPException(status_code=409, detail=f"Cannot change reservation status from {current} to {payload.status}")

    # Applies only while the status is still the one checked above
    res = db["reservation"].update_one(
        {**owned, "status": current},
        {"$set": {"status": payload.status, "updated_at": datetime.now(timezone.utc)}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=409, detail="Reservation status changed, reload and try again")
    return reservation_out(db["reservation"].find_one(owned))

# -----------------------------
# AI
# -----------------------------

@app.post("/api/ai/recommend")
def recommend(payload: RecommendRequest):
    if not payload.disease or not payload.disease.strip():
        raise HTTPException(status_code=400, detail="Disease is required")
    return {"recommendations": ai_service.get_medicine_recommendations(payload.disease.strip())}


@app.post("/api/ai/analyze-prescription")
def analyze_prescription(payload: ImageRequest):
    if not payload.image:
        raise HTTPException(status_code=400, detail="Image is required")
    try:
        return {"medicines": ai_service.analyze_prescription(payload.image)}
    except ai_service.AIQuotaExceededError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except ai_service.AIServiceError as e:
        logger.error(f"Prescription analysis failed: {str(e)}")
        raise HTTPException(status_code=502, detail="Prescription analysis failed")


@app.post("/api/ai/parse-price-slip")
def parse_price_slip(payload: ImageRequest):
    if not payload.image:
        raise HTTPException(status_code=400, detail="Image is required")
    try:
        items = ai_service.parse_price_slip(payload.image)
    except ai_service.AIQuotaExceededError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except ai_service.AIServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"items": [item.model_dump(by_alias=True) for item in items]}


@app.post("/api/ai/validate", response_model=MedicineValidation)
def validate_medicine(payload: MedicineNameRequest):
    if not payload.name or not payload.name.strip():
        raise HTTPException(status_code=400, detail="Medicine name is required")
    try:
        return ai_service.validate_medicine_name(payload.name.strip())
    except ai_service.AIServiceError as e:
        logger.error(f"Medicine validation failed: {str(e)}")
        raise HTTPException(status_code=502, detail="Medicine validation failed")


@app.post("/api/ai/describe")
def describe_medicine(payload: MedicineNameRequest):
    if not payload.name or not payload.name.strip():
        raise HTTPException(status_code=400, detail="Medicine name is required")
    return {"description": ai_service.describe_medicine(payload.name.strip())}


@app.post("/api/ai/alternative")
def medicine_alternative(payload: MedicineNameRequest):
    if not payload.name or not payload.name.strip():
        raise HTTPException(status_code=400, detail="Medicine name is required")
    return {"alternative": ai_service.suggest_alternative(payload.name.strip())}

# -----------------------------
# Geocoding
# -----------------------------

@app.get("/api/geocode/reverse")
def reverse_geocode(lat: float = Query(..., ge=-90, le=90), lon: float = Query(..., ge=-180, le=180)):
    return {"address": geocoding.reverse_geocode(lat, lon)}


@app.get("/api/geocode")
def geocode(address: str = Query(..., min_length=1)):
    lat, lon = geocoding.geocode_address(address)
    return {"lat": lat, "lon": lon}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)

"""
Database Schemas for MediFinder

Each collection model maps to a MongoDB collection named after the lowercase
class name (Pharmacy -> "pharmacy"). Fields are snake_case in storage and
camelCase on the wire.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)


class StockStatus(str, Enum):
    AVAILABLE = "Available"
    LIMITED_STOCK = "Limited Stock"
    OUT_OF_STOCK = "Out of Stock"
    UNAVAILABLE = "Unavailable"  # legacy


class ReservationStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PICKED_UP = "Picked Up"
    CANCELLED = "Cancelled"


RESERVATION_TRANSITIONS: Dict[str, Set[str]] = {
    ReservationStatus.PENDING.value: {ReservationStatus.CONFIRMED.value, ReservationStatus.CANCELLED.value},
    ReservationStatus.CONFIRMED.value: {ReservationStatus.PICKED_UP.value, ReservationStatus.CANCELLED.value},
    ReservationStatus.PICKED_UP.value: set(),
    ReservationStatus.CANCELLED.value: set(),
}


def can_transition(current: str, new: str) -> bool:
    return new in RESERVATION_TRANSITIONS.get(current, set())


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90, description="GPS latitude")
    lon: float = Field(..., ge=-180, le=180, description="GPS longitude")


# -----------------------------
# Collections
# -----------------------------

# Partner pharmacy profile; contact phone is the login key
class Pharmacy(CamelModel):
    name: str
    address: str
    location: GeoPoint
    contact: str = Field(..., description="Contact phone, used to log in")
    operating_hours: str = ""
    is_open_24x7: bool = Field(False, alias="isOpen24x7")
    rating: float = Field(0, ge=0, le=5)


# Stock line held by one pharmacy
class Medicine(CamelModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    pharmacy_id: str
    price: float = Field(..., ge=0)
    stock: StockStatus = StockStatus.AVAILABLE
    quantity: int = Field(0, ge=0)
    expiry_date: Optional[datetime] = None


# Customer hold on one unit, time-boxed by expiry_time
class Reservation(CamelModel):
    medicine_id: str
    pharmacy_id: str
    customer_name: str
    customer_phone: str
    status: ReservationStatus = ReservationStatus.PENDING
    reservation_time: datetime
    expiry_time: datetime


# -----------------------------
# Requests
# -----------------------------

class RegisterRequest(CamelModel):
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    contact: str = Field(..., min_length=1)
    location: Optional[GeoPoint] = None
    operating_hours: str = ""
    is_open_24x7: bool = Field(False, alias="isOpen24x7")


class LoginByPhoneRequest(CamelModel):
    contact: str = Field(..., min_length=1)


class MedicineCreate(CamelModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    price: float = Field(..., ge=0)
    stock: StockStatus = StockStatus.AVAILABLE
    quantity: int = Field(0, ge=0)
    expiry_date: Optional[datetime] = None


class MedicineUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[StockStatus] = None
    quantity: Optional[int] = Field(None, ge=0)
    expiry_date: Optional[datetime] = None

    @field_validator("name", "price", "stock", "quantity")
    @classmethod
    def reject_null(cls, value):
        # omit a field to leave it unchanged; null is not a value for it
        if value is None:
            raise ValueError("may not be null")
        return value


class BulkMedicineCreate(CamelModel):
    items: List[MedicineCreate] = Field(..., min_length=1)


class ReservationCreate(CamelModel):
    medicine_id: str
    pharmacy_id: Optional[str] = None
    customer_name: str = Field(..., min_length=1)
    customer_phone: str = Field(..., min_length=1)


class ReservationStatusUpdate(CamelModel):
    status: ReservationStatus

    @field_validator("status", mode="before")
    @classmethod
    def accept_compact_names(cls, value):
        # the web client sends "PickedUp"
        if value == "PickedUp":
            return ReservationStatus.PICKED_UP.value
        return value


class RecommendRequest(BaseModel):
    disease: Optional[str] = None


class ImageRequest(BaseModel):
    image: Optional[str] = Field(None, description="Base64 encoded JPEG")


class MedicineNameRequest(BaseModel):
    name: Optional[str] = None


# -----------------------------
# Responses
# -----------------------------

class PharmacyOut(CamelModel):
    id: str
    name: str
    address: str
    location: GeoPoint
    contact: str
    operating_hours: str = ""
    is_open_24x7: bool = Field(False, alias="isOpen24x7")
    rating: float = 0
    is_best_option: bool = False
    created_at: Optional[datetime] = None


class MedicineOut(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    pharmacy_id: str
    price: float
    stock: StockStatus
    quantity: int = 0
    expiry_date: Optional[datetime] = None
    pharmacy: Optional[PharmacyOut] = None


class ReservationOut(CamelModel):
    id: str
    medicine_id: str
    pharmacy_id: str
    customer_name: str
    customer_phone: str
    status: ReservationStatus
    reservation_time: datetime
    expiry_time: datetime
    created_at: Optional[datetime] = None
    medicine: Optional[MedicineOut] = None


class AuthResponse(BaseModel):
    pharmacy: PharmacyOut
    token: str


# AI gateway results

class MedicineValidation(CamelModel):
    valid: bool
    corrected_name: str = ""
    reason: str = ""


class PriceSlipItem(CamelModel):
    name: str
    price: float = Field(..., ge=0)

"""Reusable parameter validators and delivery address checks."""

import math
import re
from dataclasses import dataclass
from typing import Annotated, Optional, Tuple

from fastapi import Path, Query

from grocery.core.errors import InvalidAddress, InvalidCoordinates

# Positive integer ID validator for path parameters
PositiveIntId = Annotated[int, Path(gt=0, description="Resource ID (must be positive)")]

# Optional positive int for query params
PositiveIntQuery = Annotated[int, Query(gt=0)]


# Street-type words in Russian and English, abbreviated or spelled out
STREET_TYPE_PATTERN = re.compile(
    r"\b(ул\.?|улица|проспект|пр-т|переулок|пер\.?|бульвар|б-р|шоссе|наб\.?|набережная"
    r"|road|rd\.?|street|st\.?|avenue|ave\.?)\b",
    re.IGNORECASE,
)
_NON_ALPHA = re.compile(r"[^a-zа-яё\s-]", re.IGNORECASE)
_HOUSE_PREFIX = re.compile(r"^(дом|д\.|house|no\.?)\s*", re.IGNORECASE)
_HOUSE_TAIL = re.compile(r"(\d+[0-9a-zа-яё\-/]*)$", re.IGNORECASE)
_HOUSE_VALUE = re.compile(r"^[0-9a-zа-яё\-/]{1,12}$", re.IGNORECASE)
_STREET_WITH_HOUSE = re.compile(
    r"^(?P<street>.*?)[\s,]+(?:дом\s*|д\.\s*|house\s*|no\.?\s*)?(?P<house>\d+[0-9a-zа-яё\-/]*)$",
    re.IGNORECASE,
)
_APARTMENT_PART = re.compile(
    r"^(?:кв\.?|квартира|офис|apartment|apt\.?|flat|office)\s*(?P<number>[0-9a-zа-яё\-/]{1,12})$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class DeliveryAddress:
    locality: str
    street: str
    house: str
    apartment: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.locality}, {self.street}, {self.house}"
        return f"{text}, apt {self.apartment}" if self.apartment else text


def has_street_name(street: str) -> bool:
    """True when the text contains a street-type word or a real alphabetic token."""
    normalized = street.strip().lower()
    if len(normalized) < 3:
        return False
    if STREET_TYPE_PATTERN.search(normalized):
        return True
    tokens = _NON_ALPHA.sub(" ", normalized).split()
    return any(len(token.strip("-")) >= 3 for token in tokens)


def normalize_house_number(raw: str) -> str:
    """'дом 44' -> '44', '12/1' -> '12/1'. Empty string when there is no number."""
    value = _HOUSE_PREFIX.sub("", raw.strip())
    if not value:
        return ""
    match = _HOUSE_TAIL.search(value)
    if match:
        value = match.group(1)
    return value if _HOUSE_VALUE.match(value) and value[0].isdigit() else ""


def parse_delivery_address(address: Optional[str]) -> DeliveryAddress:
    """Split ``"locality, street, house"`` into parts.

    The house number may also trail the street (``"Springfield, Main street 5"``).
    A trailing apartment part (``"кв 5"``, ``"apt 12"``) is split off first.

    Raises:
        InvalidAddress: when any part is missing or the street does not look
            like a street.
    """
    text = " ".join((address or "").split())
    if len(text) < 5:
        raise InvalidAddress()

    parts = [part.strip() for part in text.split(",") if part.strip()]
    if len(parts) < 2:
        raise InvalidAddress()

    locality, rest = parts[0], parts[1:]
    apartment = None
    if len(rest) >= 2:
        match = _APARTMENT_PART.match(rest[-1])
        if match:
            apartment = match.group("number")
            rest = rest[:-1]

    house = normalize_house_number(rest[-1]) if len(rest) >= 2 else ""
    if house:
        street = ", ".join(rest[:-1])
    else:
        match = _STREET_WITH_HOUSE.match(rest[-1])
        if not match:
            raise InvalidAddress()
        street = ", ".join(rest[:-1] + [match.group("street").strip()])
        house = match.group("house")

    if len(locality) < 2 or not street or not has_street_name(street):
        raise InvalidAddress()

    return DeliveryAddress(locality=locality, street=street, house=house, apartment=apartment)


def validate_coordinates(
    lat: Optional[float], lng: Optional[float]
) -> Tuple[Optional[float], Optional[float]]:
    """Coordinates are optional but must come as an in-range pair."""
    if lat is None and lng is None:
        return None, None
    if lat is None or lng is None:
        raise InvalidCoordinates("Delivery coordinates must be supplied as a pair")
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        raise InvalidCoordinates()
    if math.isnan(lat_f) or math.isnan(lng_f):
        raise InvalidCoordinates()
    if not -90 <= lat_f <= 90 or not -180 <= lng_f <= 180:
        raise InvalidCoordinates(lat=lat_f, lng=lng_f)
    return lat_f, lng_f

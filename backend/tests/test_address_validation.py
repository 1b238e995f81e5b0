"""Tests for delivery address and coordinate validation."""

import pytest

from grocery.core.errors import InvalidAddress, InvalidCoordinates
from grocery.core.validators import (
    has_street_name,
    normalize_house_number,
    parse_delivery_address,
    validate_coordinates,
)


class TestParseDeliveryAddress:
    def test_russian_street_with_house_prefix(self):
        address = parse_delivery_address("Springfield, ул. Ленина, дом 44")
        assert address.locality == "Springfield"
        assert address.street == "ул. Ленина"
        assert address.house == "44"

    def test_house_trailing_street(self):
        address = parse_delivery_address("London, Baker street 221b")
        assert address.street == "Baker street"
        assert address.house == "221b"

    def test_fallback_alphabetic_street(self):
        address = parse_delivery_address("Kazan, Bauman, 12/1")
        assert address.street == "Bauman"
        assert address.house == "12/1"

    @pytest.mark.parametrize("raw, street, house, apartment", [
        ("Springfield, ул. Ленина, дом 44, кв 5", "ул. Ленина", "44", "5"),
        ("Springfield, ул. Ленина, дом 44, кв. 12а", "ул. Ленина", "44", "12а"),
        ("London, Baker street 221b, apt 3", "Baker street", "221b", "3"),
        ("Leeds, Park road, 7, Flat 2", "Park road", "7", "2"),
    ])
    def test_trailing_apartment_is_not_the_house(self, raw, street, house, apartment):
        address = parse_delivery_address(raw)
        assert (address.street, address.house, address.apartment) == (street, house, apartment)

    def test_no_apartment(self):
        assert parse_delivery_address("Springfield, ул. Ленина, дом 44").apartment is None

    @pytest.mark.parametrize("raw", [
        None,
        "",
        "Kazan",
        "Springfield, ул. Ленина",
        "Springfield, 12, 5",
        "S, ул. Ленина, 4",
        "Springfield, ул. Ленина, дом",
    ])
    def test_rejected(self, raw):
        with pytest.raises(InvalidAddress):
            parse_delivery_address(raw)


class TestHelpers:
    @pytest.mark.parametrize("street", ["ул. Мира", "проспект Победы", "Main St", "5th avenue", "Arbat"])
    def test_has_street_name(self, street):
        assert has_street_name(street)

    @pytest.mark.parametrize("street", ["12", "a b", "--"])
    def test_no_street_name(self, street):
        assert not has_street_name(street)

    @pytest.mark.parametrize("raw,expected", [
        ("дом 44", "44"),
        ("44А", "44А"),
        ("12/1", "12/1"),
        ("house 7", "7"),
        ("дом", ""),
    ])
    def test_normalize_house_number(self, raw, expected):
        assert normalize_house_number(raw) == expected


class TestCoordinates:
    def test_absent_pair(self):
        assert validate_coordinates(None, None) == (None, None)

    def test_valid_pair(self):
        assert validate_coordinates(55.75, 37.61) == (55.75, 37.61)

    @pytest.mark.parametrize("lat,lng", [(55.0, None), (None, 37.0), (91, 0), (0, -181), (float("nan"), 0)])
    def test_invalid(self, lat, lng):
        with pytest.raises(InvalidCoordinates):
            validate_coordinates(lat, lng)

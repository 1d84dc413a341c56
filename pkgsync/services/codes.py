"""OTA-facing product keys.

Every sellable product/hotel/room-type combination is exposed to the OTA
platforms as ``PKG|{room_type_id}|{hotel_id}|{product_id}``. The segment
order is fixed by the platforms that already store these keys.
"""
from typing import NamedTuple

from pkgsync.services.errors import FormatError

PREFIX = "PKG"
SEPARATOR = "|"


class CompositeCode(NamedTuple):
    room_type_id: int
    hotel_id: int
    product_id: int


def generate(product_id: int, hotel_id: int, room_type_id: int) -> str:
    return f"{PREFIX}{SEPARATOR}{int(room_type_id)}{SEPARATOR}{int(hotel_id)}{SEPARATOR}{int(product_id)}"


def validate(code: str) -> bool:
    if not isinstance(code, str) or not code.startswith(PREFIX + SEPARATOR):
        return False
    parts = code.split(SEPARATOR)
    if len(parts) != 4:
        return False
    return all(part.isascii() and part.isdigit() for part in parts[1:])


def parse(code: str) -> CompositeCode:
    if not validate(code):
        raise FormatError(f"Malformed composite code: {code!r}")
    _, room_type_id, hotel_id, product_id = code.split(SEPARATOR)
    return CompositeCode(
        room_type_id=int(room_type_id),
        hotel_id=int(hotel_id),
        product_id=int(product_id),
    )


def regenerate(parsed: CompositeCode) -> str:
    return generate(parsed.product_id, parsed.hotel_id, parsed.room_type_id)

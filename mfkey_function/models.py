"""
Pydantic models for key recovery request validation.

Each attack takes a fixed, ordered set of 32-bit values captured from a
MIFARE Classic authentication: the card UID, tag nonces (``nt``),
encrypted reader nonces (``nr``), encrypted reader answers (``ar``) and,
for mfkey64, the encrypted tag answer (``at``).  Every value must read
as exactly eight hexadecimal digits.  A JSON number is read by its
decimal text, so ``12345678`` means ``0x12345678``; booleans, objects
and arrays are always rejected.

The declaration order of the fields is significant: it is the positional
argument order of the backend call, and the first invalid field in that
order is the one named in the HTTP 400 response.  Unknown fields in the
request body are ignored.
"""

import typing

import pydantic

HEXADECIMAL_WORD_PATTERN = r"^[0-9a-fA-F]{8}$"


def _number_as_decimal_text(value: typing.Any) -> typing.Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return value


HexadecimalWord = typing.Annotated[
    str,
    pydantic.Field(pattern=HEXADECIMAL_WORD_PATTERN),
    pydantic.BeforeValidator(_number_as_decimal_text),
]


class KeyRecoveryRequest(pydantic.BaseModel):
    """
    Base class for key recovery request bodies.

    Subclasses declare only ``HexadecimalWord`` fields.
    """

    model_config = pydantic.ConfigDict(extra="ignore", strict=True)

    def as_arguments(self) -> tuple[int, ...]:
        """Return the field values parsed as base-16 integers, in declaration order."""
        return tuple(int(getattr(self, field_name), 16) for field_name in type(self).model_fields)


class Mfkey32Request(KeyRecoveryRequest):
    """Request body for ``POST /mfkey32``: two authentications sharing one tag nonce."""

    uid: HexadecimalWord
    nt0: HexadecimalWord
    nr0: HexadecimalWord
    ar0: HexadecimalWord
    nr1: HexadecimalWord
    ar1: HexadecimalWord


class Mfkey32v2Request(KeyRecoveryRequest):
    """Request body for ``POST /mfkey32v2``: two authentications with distinct tag nonces."""

    uid: HexadecimalWord
    nt0: HexadecimalWord
    nr0: HexadecimalWord
    ar0: HexadecimalWord
    nt1: HexadecimalWord
    nr1: HexadecimalWord
    ar1: HexadecimalWord


class Mfkey64Request(KeyRecoveryRequest):
    """Request body for ``POST /mfkey64``: one sniffed authentication including the tag answer."""

    uid: HexadecimalWord
    nt: HexadecimalWord
    nr: HexadecimalWord
    ar: HexadecimalWord
    at: HexadecimalWord


class KeyRecoveryResponse(pydantic.BaseModel):
    """Successful key recovery: the 48-bit key as twelve upper-case hex digits."""

    key: str = pydantic.Field(
        ...,
        pattern=r"^[0-9A-F]{12}$",
        examples=["FFFFFFFFFFFF"],
    )

from functools import total_ordering
from typing import Any, Optional

from pydantic import GetCoreSchemaHandler, GetJsonSchemaHandler
from pydantic.json_schema import JsonSchemaValue
from pydantic_core import core_schema

from errors import DecimalError, InvalidRepresentation, Overflow


DECIMAL_DIGITS = 4
UNIT_IN_DECIMALS = 10 ** DECIMAL_DIGITS
MAX_AMOUNT = 2 ** 64 - 1


@total_ordering
class CurrencyValue:
    """
    Exact monetary amount with four decimal digits of precision.

    The value is kept as a single non-negative integer count of the smallest
    unit (1.0000 == 10000), bounded by the unsigned 64-bit range. Arithmetic
    is checked and never wraps.
    """

    __slots__ = ("_amount",)

    def __init__(self, amount: int = 0):
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise TypeError(f"Currency amount must be an int, got {type(amount).__name__}")
        if amount < 0 or amount > MAX_AMOUNT:
            raise Overflow(f"Currency amount {amount} out of range")
        self._amount = amount

    @classmethod
    def zero(cls) -> "CurrencyValue":
        return cls(0)

    @classmethod
    def from_parts(cls, units: int, fraction: int) -> "CurrencyValue":
        """Build a value from whole units plus a fraction in 1/10000 units."""
        if fraction < 0 or fraction >= UNIT_IN_DECIMALS:
            raise DecimalError(f"Fraction {fraction} must be below {UNIT_IN_DECIMALS}")
        if units < 0:
            raise Overflow(f"Negative units {units}")
        value = units * UNIT_IN_DECIMALS + fraction
        if value > MAX_AMOUNT:
            raise Overflow(f"{units} units do not fit the currency range")
        return cls(value)

    @classmethod
    def parse(cls, text: str) -> "CurrencyValue":
        """
        Parse "<digits>[.<digits>]".

        Fractional digits past the fourth are truncated, missing ones are
        zero-filled, so "1.5" == "1.5000" and "1.00019" == "1.0001".
        """
        fields = text.split(".")
        if len(fields) > 2:
            raise InvalidRepresentation(f"Invalid amount {text!r}: multiple separators")

        units = fields[0]
        decimals = fields[1] if len(fields) == 2 else ""
        if not _is_digits(units):
            raise InvalidRepresentation(f"Invalid amount {text!r}")
        if decimals and not _is_digits(decimals):
            raise InvalidRepresentation(f"Invalid amount {text!r}")
        if len(units.lstrip("0")) > len(str(MAX_AMOUNT)):
            raise InvalidRepresentation(f"Invalid amount {text!r}: out of range")

        decimals = decimals[:DECIMAL_DIGITS].ljust(DECIMAL_DIGITS, "0")
        try:
            return cls.from_parts(int(units.lstrip("0") or "0"), int(decimals))
        except (DecimalError, Overflow) as e:
            raise InvalidRepresentation(f"Invalid amount {text!r}: {e}") from e

    @property
    def units(self) -> int:
        """Raw count of 1/10000 units."""
        return self._amount

    def is_zero(self) -> bool:
        return self._amount == 0

    def checked_add(self, other: "CurrencyValue") -> Optional["CurrencyValue"]:
        total = self._amount + other._amount
        if total > MAX_AMOUNT:
            return None
        return CurrencyValue(total)

    def checked_sub(self, other: "CurrencyValue") -> Optional["CurrencyValue"]:
        # None means the result would drop below zero
        if other._amount > self._amount:
            return None
        return CurrencyValue(self._amount - other._amount)

    def format(self) -> str:
        units, decimals = divmod(self._amount, UNIT_IN_DECIMALS)
        return f"{units}.{decimals:0{DECIMAL_DIGITS}d}"

    def __str__(self) -> str:
        return self.format()

    def __repr__(self) -> str:
        return f"CurrencyValue('{self.format()}')"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, CurrencyValue):
            return NotImplemented
        return self._amount == other._amount

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, CurrencyValue):
            return NotImplemented
        return self._amount < other._amount

    def __hash__(self) -> int:
        return hash(self._amount)

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda v: v.format()
            ),
        )

    @classmethod
    def __get_pydantic_json_schema__(
        cls, schema: core_schema.CoreSchema, handler: GetJsonSchemaHandler
    ) -> JsonSchemaValue:
        return {"type": "string", "pattern": r"^[0-9]+(\.[0-9]*)?$", "examples": ["1.5000"]}

    @classmethod
    def _validate(cls, value: Any) -> "CurrencyValue":
        if isinstance(value, CurrencyValue):
            return value
        if isinstance(value, str):
            return cls.parse(value.strip())
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls.from_parts(value, 0)
            except (DecimalError, Overflow) as e:
                raise InvalidRepresentation(f"Invalid amount {value!r}: {e}") from e
        raise InvalidRepresentation(
            f"Amount must be a decimal string, got {type(value).__name__}"
        )


def _is_digits(text: str) -> bool:
    # str.isdigit() also accepts non-ASCII digits such as "²"
    return bool(text) and all("0" <= c <= "9" for c in text)

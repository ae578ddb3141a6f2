"""
Pricing Models

Records exchanged between discovery, fetchers and storage:
- MicroUsd: fixed-point USD amount (integer micro-dollars)
- TokenInfo: a discovered token candidate
- Price: latest USD price of a token on one chain
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple, Union


class MicroUsd(int):
    """
    Unsigned USD amount scaled by 10^6.

    Serialization contract: the wire form is always the base-10 string of
    the integer (``"1000000"`` for one dollar). Floats never enter or leave
    this type.
    """

    SCALE = 10**6

    def __new__(cls, value: Union[int, str, "MicroUsd"]) -> "MicroUsd":
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise TypeError(f"MicroUsd requires int or decimal string, got {type(value).__name__}")
        if isinstance(value, str):
            text = value.strip()
            if not text.isdigit():
                raise ValueError(f"Invalid micro-dollar string: {value!r}")
            value = int(text)
        if value < 0:
            raise ValueError(f"MicroUsd must be non-negative, got {value}")
        return super().__new__(cls, value)

    @classmethod
    def from_wire(cls, raw: Union[int, str]) -> "MicroUsd":
        return cls(raw)

    @classmethod
    def from_decimal(cls, usd: Union[Decimal, str]) -> "MicroUsd":
        """Convert a decimal USD amount, truncating below one micro-dollar."""
        try:
            amount = Decimal(usd)
        except InvalidOperation as exc:
            raise ValueError(f"Invalid USD amount: {usd!r}") from exc
        if not amount.is_finite():
            raise ValueError(f"Invalid USD amount: {usd!r}")
        scaled = (amount * cls.SCALE).to_integral_value(rounding=ROUND_DOWN)
        return cls(int(scaled))

    def to_wire(self) -> str:
        return str(int(self))

    def to_decimal(self) -> Decimal:
        return Decimal(int(self)) / Decimal(self.SCALE)

    def __repr__(self) -> str:
        return f"MicroUsd({int(self)})"


def normalize_address(address: str) -> str:
    if not isinstance(address, str) or not address:
        raise ValueError("Token address must be a non-empty string")
    return address.strip().lower()


@dataclass(frozen=True)
class TokenInfo:
    """Token candidate produced by a discovery source."""
    address: str
    chain_id: int
    source: str
    symbol: Optional[str] = None
    name: Optional[str] = None
    decimals: Optional[int] = None

    @property
    def identity(self) -> Tuple[int, str]:
        """Dedup key: (chain_id, lowercase address). Provenance is excluded."""
        return (self.chain_id, self.address.lower())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address.lower(),
            "chainId": self.chain_id,
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "source": self.source,
        }


@dataclass(frozen=True)
class Price:
    """Latest USD price for one token on one chain."""
    address: str
    chain_id: int
    price: MicroUsd
    source: str

    def __post_init__(self) -> None:
        if not isinstance(self.price, MicroUsd):
            object.__setattr__(self, "price", MicroUsd(self.price))

    def normalized(self) -> "Price":
        """Copy with a lowercase address, used at the cache write boundary."""
        return Price(
            address=normalize_address(self.address),
            chain_id=self.chain_id,
            price=self.price,
            source=self.source,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: ``{address, price: "<micro-dollars>", source}``."""
        return {
            "address": self.address.lower(),
            "price": self.price.to_wire(),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], chain_id: int) -> "Price":
        return cls(
            address=normalize_address(data["address"]),
            chain_id=chain_id,
            price=MicroUsd.from_wire(data["price"]),
            source=str(data.get("source", "unknown")),
        )


__all__ = ["MicroUsd", "TokenInfo", "Price", "normalize_address"]

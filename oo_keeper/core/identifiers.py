# /oo_keeper/core/identifiers.py
# Price identifiers the keeper knows how to price, and at what precision.
# Precision belongs to the identifier: a feed built for an identifier always
# reports prices scaled to these decimals, whatever config it was built with.
from typing import Dict, Optional

from pydantic import BaseModel

from oo_keeper.core.errors import UnresolvableIdentifier


class IdentifierInfo(BaseModel):
    decimals: int
    coingecko_id: Optional[str] = None
    vs_currency: str = "usd"
    invert: bool = False

    class Config:
        frozen = True


IDENTIFIER_REGISTRY: Dict[str, IdentifierInfo] = {
    # Test identifiers, priced only through currentPrice/historicalPrice overrides.
    "TEST8DECIMALS": IdentifierInfo(decimals=8),
    "TEST6DECIMALS": IdentifierInfo(decimals=6),
    "TEST18DECIMALS": IdentifierInfo(decimals=18),
    "ETHUSD": IdentifierInfo(decimals=18, coingecko_id="ethereum", vs_currency="usd"),
    "BTCUSD": IdentifierInfo(decimals=8, coingecko_id="bitcoin", vs_currency="usd"),
    "ETH/BTC": IdentifierInfo(decimals=8, coingecko_id="ethereum", vs_currency="btc"),
    "USDETH": IdentifierInfo(decimals=18, coingecko_id="ethereum", vs_currency="usd", invert=True),
}


def get_identifier_info(identifier: str, registry: Optional[Dict[str, IdentifierInfo]] = None) -> IdentifierInfo:
    registry = IDENTIFIER_REGISTRY if registry is None else registry
    try:
        return registry[identifier]
    except KeyError:
        raise UnresolvableIdentifier(identifier) from None


def get_precision(identifier: str, registry: Optional[Dict[str, IdentifierInfo]] = None) -> int:
    return get_identifier_info(identifier, registry).decimals


def decode_identifier(raw) -> str:
    """bytes32 identifier -> its utf-8 symbol, without the zero padding."""
    if isinstance(raw, str):
        raw = bytes.fromhex(raw[2:] if raw.startswith("0x") else raw)
    return bytes(raw).rstrip(b"\x00").decode("utf-8")


def encode_identifier(identifier: str) -> bytes:
    data = identifier.encode("utf-8")
    if len(data) > 32:
        raise ValueError(f"Identifier {identifier!r} does not fit in bytes32")
    return data.ljust(32, b"\x00")


def stamp_ancillary_data(ancillary_data: bytes, requester: str) -> bytes:
    """Ancillary data as the optimistic oracle forwards it to the fallback oracle.

    The requester is appended as `ooRequester:<hex address>`, comma-separated
    from any existing data. Resolutions are keyed on these bytes.
    """
    address = requester.lower()
    if address.startswith("0x"):
        address = address[2:]
    separator = b"," if ancillary_data else b""
    return bytes(ancillary_data) + separator + b"ooRequester:" + address.encode("utf-8")

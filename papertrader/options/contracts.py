from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

from papertrader.errors import InvalidContractIdentifier
from papertrader.models import OptionContract, OptionRight

CONTRACT_PREFIX = "O:"
CONTRACT_MULTIPLIER = 100
STRIKE_SCALE = 1000

# O:{UNDERLYING}{YYMMDD}{C|P}{STRIKE x 1000}, e.g. O:NVDA250221C00139000
_CONTRACT_RE = re.compile(r"^O:(?P<underlying>[A-Za-z.]+)(?P<expiry>\d{6})(?P<right>[CP])(?P<strike>\d+)$")


def parse_contract_id(contract_id: str) -> OptionContract:
    if not isinstance(contract_id, str):
        raise InvalidContractIdentifier(f"Contract id must be a string, got {type(contract_id).__name__}")
    m = _CONTRACT_RE.match(contract_id)
    if not m:
        raise InvalidContractIdentifier(f"Malformed contract id: {contract_id!r}")

    expiry = m.group("expiry")
    try:
        expiration = date(2000 + int(expiry[0:2]), int(expiry[2:4]), int(expiry[4:6]))
    except ValueError as exc:
        raise InvalidContractIdentifier(f"Bad expiration in {contract_id!r}: {exc}") from exc

    return OptionContract(
        contract_id=contract_id,
        underlying=m.group("underlying"),
        expiration=expiration,
        right=OptionRight(m.group("right")),
        strike=Decimal(int(m.group("strike"))) / STRIKE_SCALE,
        multiplier=CONTRACT_MULTIPLIER,
    )


def format_contract_id(underlying: str, expiration: date, right: OptionRight | str, strike: Decimal | float | int) -> str:
    """Inverse of :func:`parse_contract_id`; ``strike`` is the human price (139.5, not 139500)."""
    right = OptionRight(right)
    raw_strike = Decimal(str(strike)) * STRIKE_SCALE
    if raw_strike != raw_strike.to_integral_value() or raw_strike < 0:
        raise InvalidContractIdentifier(f"Strike {strike} is not representable in thousandths")
    if not underlying or not underlying.replace(".", "").isalpha():
        raise InvalidContractIdentifier(f"Bad underlying symbol: {underlying!r}")
    if not 2000 <= expiration.year <= 2099:
        raise InvalidContractIdentifier(f"Expiration year out of range: {expiration.year}")
    return f"{CONTRACT_PREFIX}{underlying.upper()}{expiration:%y%m%d}{right.value}{int(raw_strike):08d}"


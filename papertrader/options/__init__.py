from papertrader.options.contracts import CONTRACT_MULTIPLIER, format_contract_id, parse_contract_id
from papertrader.options.lifecycle import OptionsLifecycle, Settlement

__all__ = [
    "CONTRACT_MULTIPLIER",
    "OptionsLifecycle",
    "Settlement",
    "format_contract_id",
    "parse_contract_id",
]

import re
from typing import Optional

# Futures month codes: F G H J K M N Q U V X Z, followed by 1-2 year digits.
# Examples: MESZ5 -> MES, NQZ5 -> NQ, MNQM5 -> MNQ, MESZ25 -> MES
_expiry_re = re.compile(r"[FGHJKMNQUVXZ]\d{1,2}$")

# "ESH5@CME", "ESH5.CME", "ESH5 CME"
_exchange_re = re.compile(r"[@. ][A-Z]+$")


def _clean(symbol: Optional[str]) -> str:
    if symbol is None:
        return ""
    return str(symbol).strip().upper()


def contract_symbol(symbol: Optional[str]) -> str:
    """Strip the exchange suffix but keep the expiry (MESZ5@CME -> MESZ5)."""
    s = _clean(symbol)
    stripped = _exchange_re.sub("", s)
    return stripped or s


def base_symbol(symbol: Optional[str]) -> str:
    """Strip exchange and expiry suffixes (ESH5@CME -> ES)."""
    s = contract_symbol(symbol)
    stripped = _expiry_re.sub("", s)
    # a bare month-code ticker ("Z5") is not a futures contract, keep it
    return stripped or s

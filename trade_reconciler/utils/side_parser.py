import re
from decimal import Decimal
from typing import Optional

from trade_reconciler.services.types import FillSide

_ws_re = re.compile(r"\s+", flags=re.UNICODE)


def _normalize_text(s: Optional[str]) -> str:
    if s is None:
        return ""

    # Replace common odd whitespace
    s = str(s).replace("\u00A0", " ")  # NBSP
    s = s.replace("\u200B", "")  # zero-width space

    # Strip non-printing control chars
    s = "".join(ch for ch in s if ch.isprintable())

    s = s.strip()
    s = _ws_re.sub(" ", s)
    return s


_re_buy = re.compile(r"^(b|buy|bot|bought|long|buy to open|buy to cover)$", re.I)
_re_sell = re.compile(r"^(s|sell|sld|sold|short|sell short|sell to close)$", re.I)


def parse_side(side: Optional[str]) -> Optional[FillSide]:
    """Map the many broker spellings of buy/sell onto FillSide."""
    s = _normalize_text(side)
    if not s:
        return None
    if _re_buy.match(s):
        return FillSide.BUY
    if _re_sell.match(s):
        return FillSide.SELL
    return None


def side_from_signed_quantity(*quantities: Optional[Decimal]) -> Optional[FillSide]:
    """First non-zero quantity wins: positive = BUY, negative = SELL."""
    for q in quantities:
        if q is None or q == 0:
            continue
        return FillSide.BUY if q > 0 else FillSide.SELL
    return None

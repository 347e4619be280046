from typing import Any, Dict, Mapping, Optional

# Canonical fields a generic CSV row can be mapped onto. The mapping itself
# (canonical field -> CSV header) is produced upstream and handed to us finished.
CANONICAL_FIELDS = (
    "account_number",
    "symbol",
    "side",
    "quantity",
    "price",
    "timestamp",
    "commission",
    "fill_id",
)


def apply_column_mapping(row: Mapping[str, Any], mapping: Optional[Mapping[str, str]]) -> Dict[str, Any]:
    """
    Rename CSV columns onto canonical field names.

    Columns not referenced by the mapping are dropped. Without a mapping the
    row is assumed to already use canonical names.
    """
    if not mapping:
        return {k: v for k, v in row.items() if k in CANONICAL_FIELDS}

    unknown = set(mapping) - set(CANONICAL_FIELDS)
    if unknown:
        raise ValueError(f"unknown canonical fields in column mapping: {sorted(unknown)}")

    # header lookup is case/whitespace tolerant
    headers = {str(k).strip().lower(): k for k in row}
    out: Dict[str, Any] = {}
    for field, header in mapping.items():
        key = headers.get(str(header).strip().lower())
        if key is not None:
            out[field] = row[key]
    return out

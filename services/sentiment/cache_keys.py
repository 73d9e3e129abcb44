# services/sentiment/cache_keys.py
"""
Deterministic cache fingerprints.

Heatmap keys spell out every filter field by name, in a fixed order, with `|`
between fields, so adjacent numeric fields can never run together ("10","20"
vs "1","020"). Numbers go through float() first: 10 and 10.0 are the same
filter and share a key.
"""
from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING, Iterable, List, Optional

if TYPE_CHECKING:
    from schemas.sentiment_heatmap import HeatmapFilters, OptionsContract

HEATMAP_KEY_PREFIX = "heatmap:v1"
SCORE_KEY_PREFIX = "sentiment:score:v1"

_ABSENT = "~"
_ALL = "*"


def _num(v: Optional[float]) -> str:
    return _ABSENT if v is None else repr(float(v))


def _underlyings(values: Optional[Iterable[str]]) -> str:
    if values is None:
        return _ALL
    norm = sorted({(v or "").strip().upper() for v in values if (v or "").strip()})
    # JSON keeps symbols with odd characters unambiguous; the digest keeps long lists short
    encoded = json.dumps(norm, separators=(",", ":"))
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()[:12]


def contracts_fingerprint(contracts: Iterable["OptionsContract"]) -> str:
    """Short digest of the contract universe and its market data; input order does not matter."""
    parts: List[str] = sorted(
        "\t".join(
            (
                c.ticker,
                c.underlying,
                repr(float(c.strike)),
                c.contract_type,
                c.expiration_date.isoformat(),
                _num(c.volume),
                _num(c.open_interest),
                _num(c.implied_volatility),
            )
        )
        for c in contracts
    )
    return hashlib.sha1("\n".join(parts).encode("utf-8")).hexdigest()[:16]


def heatmap_cache_key(
    filters: "HeatmapFilters",
    contracts: Optional[Iterable["OptionsContract"]] = None,
) -> str:
    strike = filters.strike_range
    fields = [
        ("underlyings", _underlyings(filters.underlyings)),
        ("expiry", filters.expiry_bucket),
        ("mode", filters.scoring_mode),
        ("min_conf", _num(filters.min_confidence)),
        ("min_score", _num(filters.min_score)),
        ("max_score", _num(filters.max_score)),
        ("strike_min", _num(strike.min if strike else None)),
        ("strike_max", _num(strike.max if strike else None)),
    ]
    if contracts is not None:
        fields.append(("universe", contracts_fingerprint(contracts)))
    return HEATMAP_KEY_PREFIX + "|" + "|".join(f"{name}={value}" for name, value in fields)


def score_cache_key(underlying: str) -> str:
    return f"{SCORE_KEY_PREFIX}:{(underlying or '').strip().upper()}"

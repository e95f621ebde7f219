"""
Best-effort extraction of token and cost figures from ``usage`` lines.

The CLI prints usage in several shapes ("Input tokens: 1,234",
"1.2k output tokens", "Total cost: $0.0123"). Anything not recognised is
left at zero; the raw line is always what gets forwarded to the client.
"""

import re
from dataclasses import dataclass

_NUMBER = r"(\d[\d,]*(?:\.\d+)?)\s*([kKmM]?)"

INPUT_TOKENS = [
    re.compile(r"input\s+tokens?\s*[:=]?\s*" + _NUMBER, re.IGNORECASE),
    re.compile(_NUMBER + r"\s+input\s+tokens?", re.IGNORECASE),
    re.compile(r"tokens?\s+in\s*[:=]?\s*" + _NUMBER, re.IGNORECASE),
]
OUTPUT_TOKENS = [
    re.compile(r"output\s+tokens?\s*[:=]?\s*" + _NUMBER, re.IGNORECASE),
    re.compile(_NUMBER + r"\s+output\s+tokens?", re.IGNORECASE),
    re.compile(r"tokens?\s+out\s*[:=]?\s*" + _NUMBER, re.IGNORECASE),
]
COST = re.compile(r"cost[^$\d]*\$?\s*(\d+(?:\.\d+)?)", re.IGNORECASE)

_SUFFIX = {"": 1, "k": 1_000, "m": 1_000_000}


@dataclass
class UsageFigures:
    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not (self.tokens_in or self.tokens_out or self.cost_usd)


def _to_int(number: str, suffix: str) -> int:
    return int(round(float(number.replace(",", "")) * _SUFFIX[suffix.lower()]))


def _first(patterns, line: str) -> int:
    for pattern in patterns:
        match = pattern.search(line)
        if match:
            return _to_int(match.group(1), match.group(2))
    return 0


def parse_usage(raw: str) -> UsageFigures:
    cost = COST.search(raw)
    return UsageFigures(
        tokens_in=_first(INPUT_TOKENS, raw),
        tokens_out=_first(OUTPUT_TOKENS, raw),
        cost_usd=float(cost.group(1)) if cost else 0.0,
    )

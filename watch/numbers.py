from __future__ import annotations

import re
from typing import Optional

# Browser parseInt semantics: leading whitespace, optional sign, then digits; trailing junk ignored.
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class NotParseableNumberError(ValueError):
    def __init__(self, value: object):
        super().__init__(f"not_parseable_number:{value!r}")
        self.value = value


def require_int(value: object) -> int:
    if isinstance(value, bool):
        raise NotParseableNumberError(value)
    if isinstance(value, int):
        return value
    m = _LEADING_INT.match(value) if isinstance(value, str) else None
    if not m:
        raise NotParseableNumberError(value)
    return int(m.group(1))


def parse_int(value: object) -> Optional[int]:
    try:
        return require_int(value)
    except NotParseableNumberError:
        return None

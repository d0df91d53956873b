# card_identity/core/ids.py
from __future__ import annotations

import re
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

_RECORD_ID_RE = re.compile(r"^(\d{17})-([0-9a-f]{8})$")
_RAND_BITS = 32
_RAND_LIMIT = 1 << _RAND_BITS

_lock = threading.Lock()
_last_sort_key = -1
_last_rand = 0


@dataclass(frozen=True, order=True)
class RecordID:
    """
    Time-sortable record id.

    Format (string, 26 chars):
        YYYYMMDDHHMMSSmmm-randhex

    Example:
        20251206181530123-a3f9c1b2

    Properties:
        - Lexicographically sortable by time
        - Monotonic inside one process: ids minted in the same millisecond
          increment the random part instead of drawing a new one
    """

    sort_key: int
    raw: str

    @classmethod
    def new(cls, when: Optional[datetime] = None) -> "RecordID":
        global _last_sort_key, _last_rand

        if when is None:
            when = datetime.now(timezone.utc)
        elif when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        else:
            when = when.astimezone(timezone.utc)

        sort_key = int(when.strftime("%Y%m%d%H%M%S%f")[:-3])

        with _lock:
            if sort_key <= _last_sort_key:
                sort_key = _last_sort_key
                rand = _last_rand + 1
                if rand >= _RAND_LIMIT:
                    # random space for this millisecond is spent; borrow the next one
                    sort_key += 1
                    rand = secrets.randbits(_RAND_BITS - 1)
            else:
                # top bit left clear so increments rarely overflow
                rand = secrets.randbits(_RAND_BITS - 1)
            _last_sort_key = sort_key
            _last_rand = rand

        raw = f"{sort_key:017d}-{rand:08x}"
        return cls(sort_key=sort_key, raw=raw)

    @classmethod
    def parse(cls, raw: str) -> "RecordID":
        m = _RECORD_ID_RE.match(raw)
        if not m:
            raise ValueError(f"Invalid RecordID format: {raw!r}")
        return cls(sort_key=int(m.group(1)), raw=raw)

    @property
    def datetime(self) -> datetime:
        """UTC datetime (millisecond precision) encoded in this id."""
        ts = f"{self.sort_key:017d}"
        return datetime(
            int(ts[0:4]), int(ts[4:6]), int(ts[6:8]),
            int(ts[8:10]), int(ts[10:12]), int(ts[12:14]),
            int(ts[14:17]) * 1000,
            tzinfo=timezone.utc,
        )

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"RecordID(raw={self.raw!r})"


def new_record_id() -> str:
    return RecordID.new().raw

"""
Tests for Record and key normalization in postercache/cache/record.py.

Test Perspectives Table:
| Case ID   | Input / Precondition           | Perspective            | Expected Result                      | Notes |
|-----------|--------------------------------|------------------------|--------------------------------------|-------|
| TC-N-01   | New record                     | Equivalence - normal   | access_count=1                       | -     |
| TC-N-02   | touch() with later time        | Equivalence - normal   | count +1, last_accessed advanced     | -     |
| TC-B-01   | touch() with earlier time      | Boundary - clock skew  | last_accessed does not decrease      | -     |
| TC-N-03   | copy() then mutate             | Equivalence - isolation| Original unchanged                   | -     |
| TC-A-01   | Empty key                      | Boundary - invalid     | InvalidKeyError                      | -     |
| TC-A-02   | access_count=0                 | Boundary - invalid     | ValueError                           | -     |
| TC-N-04   | normalize_key with whitespace  | Equivalence - normal   | Stripped key                         | -     |
| TC-A-03   | normalize_key blank / non-str  | Boundary - invalid     | InvalidKeyError                      | -     |
"""

import pytest

from postercache.cache.errors import CacheErrorCode, InvalidKeyError
from postercache.cache.record import Record, normalize_key


class TestRecord:
    """Tests for Record."""

    def test_new_record_defaults(self) -> None:
        """TC-N-01: A fresh record counts its creating access."""
        record = Record(key="Avengers", value="https://posters.example/avengers.jpg")

        assert record.access_count == 1
        assert record.last_accessed > 0

    def test_touch_increments_and_advances(self) -> None:
        """TC-N-02: touch() counts exactly one hit."""
        record = Record(key="Alien", value="u", last_accessed=100.0)

        record.touch(now=200.0)

        assert record.access_count == 2
        assert record.last_accessed == 200.0

    def test_touch_never_moves_backwards(self) -> None:
        """TC-B-01: last_accessed is monotonic under clock skew."""
        record = Record(key="Alien", value="u", last_accessed=500.0)

        record.touch(now=100.0)

        assert record.access_count == 2
        assert record.last_accessed == 500.0

    def test_copy_is_detached(self) -> None:
        """TC-N-03: Mutating a copy leaves the original untouched."""
        record = Record(key="Heat", value="u", access_count=3, last_accessed=10.0)

        clone = record.copy()
        clone.touch(now=20.0)

        assert record.access_count == 3
        assert record.last_accessed == 10.0
        assert clone.access_count == 4

    def test_rank_orders_by_count_then_recency(self) -> None:
        low = Record(key="a", value="u", access_count=1, last_accessed=50.0)
        older = Record(key="b", value="u", access_count=2, last_accessed=10.0)
        newer = Record(key="c", value="u", access_count=2, last_accessed=20.0)

        assert sorted([newer, older, low], key=Record.rank) == [low, older, newer]

    def test_empty_key_rejected(self) -> None:
        """TC-A-01: Empty keys are invalid."""
        with pytest.raises(InvalidKeyError) as exc_info:
            Record(key="", value="u")

        assert exc_info.value.code == CacheErrorCode.INVALID_KEY

    def test_zero_access_count_rejected(self) -> None:
        """TC-A-02: access_count must be at least 1."""
        with pytest.raises(ValueError, match="access_count"):
            Record(key="Alien", value="u", access_count=0)


class TestNormalizeKey:
    """Tests for normalize_key."""

    def test_strips_whitespace(self) -> None:
        """TC-N-04: Surrounding whitespace is removed."""
        assert normalize_key("  The Thing \n") == "The Thing"

    @pytest.mark.parametrize("key", ["", "   ", None, 42])
    def test_invalid_keys(self, key: object) -> None:
        """TC-A-03: Blank strings and non-strings are rejected."""
        with pytest.raises(InvalidKeyError):
            normalize_key(key)

    def test_invalid_key_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            normalize_key("")

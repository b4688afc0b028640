"""Tests for short ID generation."""
import pytest

from app.services.errors import IdSpaceExhaustedError
from app.services.id_generator import DEFAULT_ALPHABET, ShortIdGenerator


async def _never(_candidate: str) -> bool:
    return False


async def test_generates_fixed_length_ids_over_alphabet():
    generator = ShortIdGenerator(length=6)

    for _ in range(50):
        short_id = await generator.next(_never)
        assert len(short_id) == 6
        assert short_id.isalnum()
        assert set(short_id) <= set(DEFAULT_ALPHABET)


def test_alphabet_has_no_confusable_characters():
    assert not set("0O1lI") & set(DEFAULT_ALPHABET)


async def test_retries_until_unused_id_found():
    seen = []

    async def exists(candidate: str) -> bool:
        seen.append(candidate)
        return len(seen) < 4

    short_id = await ShortIdGenerator().next(exists)

    assert len(seen) == 4
    assert short_id == seen[-1]


async def test_exhaustion_is_detected():
    async def always(_candidate: str) -> bool:
        return True

    generator = ShortIdGenerator(length=1, max_attempts=5)

    with pytest.raises(IdSpaceExhaustedError):
        await generator.next(always)


def test_rejects_bad_configuration():
    with pytest.raises(ValueError):
        ShortIdGenerator(length=0)
    with pytest.raises(ValueError):
        ShortIdGenerator(alphabet="aaaa")

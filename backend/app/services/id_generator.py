"""Short, URL-safe random identifiers for file and URL records."""
import logging
import secrets
from typing import Awaitable, Callable

from app.services.errors import IdSpaceExhaustedError

logger = logging.getLogger(__name__)

# Digits and letters without the visually confusable 0 O 1 l I
DEFAULT_ALPHABET = "23456789abcdefghijkmnopqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ"

ExistsCheck = Callable[[str], Awaitable[bool]]


class ShortIdGenerator:
    """Generates fixed-length random IDs, retrying on collision.

    Each namespace (files, URLs) passes its own exists check, so the same
    generator serves both tables while uniqueness is enforced per table.
    """

    def __init__(self, length: int = 6, alphabet: str = DEFAULT_ALPHABET, max_attempts: int = 10_000):
        if length <= 0:
            raise ValueError("length must be positive")
        if len(set(alphabet)) < 2:
            raise ValueError("alphabet needs at least two distinct characters")
        self.length = length
        self.alphabet = alphabet
        self.max_attempts = max_attempts

    def random_id(self) -> str:
        return "".join(secrets.choice(self.alphabet) for _ in range(self.length))

    async def next(self, exists: ExistsCheck) -> str:
        """Return an ID for which `exists` is false.

        Raises IdSpaceExhaustedError after max_attempts consecutive collisions.
        At sane table sizes the expected number of retries is close to zero,
        so hitting the bound means the ID length is misconfigured.
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.random_id()
            if not await exists(candidate):
                if attempt > 1:
                    logger.debug(f"Short ID found after {attempt} attempts")
                return candidate
        logger.critical(
            f"Short ID space exhausted after {self.max_attempts} attempts "
            f"(length={self.length}, alphabet={len(self.alphabet)} chars)"
        )
        raise IdSpaceExhaustedError(
            f"No free ID of length {self.length} after {self.max_attempts} attempts"
        )

"""In-process read cache of user DTOs keyed by id, invalidated by every write path."""

import logging
import threading

from account_service.schemas.user import UserResponse

logger = logging.getLogger(__name__)

Generation = tuple[int, int]


class UserCache:
    """
    Readers take `generation(user_id)` before loading the row and pass it to
    `put`. Any evict or clear in between bumps the generation, so a DTO read
    before a write can never be stored after it.
    """

    def __init__(self) -> None:
        self._entries: dict[int, UserResponse] = {}
        self._generations: dict[int, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    def get(self, user_id: int) -> UserResponse | None:
        with self._lock:
            return self._entries.get(user_id)

    def generation(self, user_id: int) -> Generation:
        with self._lock:
            return self._epoch, self._generations.get(user_id, 0)

    def put(self, user: UserResponse, generation: Generation | None = None) -> bool:
        """Store `user` unless it was invalidated since `generation` was taken."""
        with self._lock:
            current = (self._epoch, self._generations.get(user.id, 0))
            if generation is not None and generation != current:
                logger.debug("Dropping stale cache fill for user %s", user.id)
                return False
            self._entries[user.id] = user
            return True

    def evict(self, user_id: int) -> None:
        with self._lock:
            self._entries.pop(user_id, None)
            self._generations[user_id] = self._generations.get(user_id, 0) + 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.clear()
            self._epoch += 1
        logger.debug("User cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._entries


# Shared by every request in this process.
user_cache = UserCache()

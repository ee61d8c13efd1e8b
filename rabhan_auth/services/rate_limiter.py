from rabhan_auth.services.ephemeral_store import EphemeralStore
from rabhan_auth.services.errors import RateLimitExceeded


class RateLimiter:
    """Per-purpose attempt counter living in the ephemeral store.

    The read in :meth:`increment` and the write after it are separate store
    calls, so concurrent callers can both slip under the ceiling. The limit is
    advisory; the window restarts whenever the counter is written.
    """

    def __init__(self, store: EphemeralStore, purpose: str, limit: int = 5, window_seconds: int = 3600):
        self.store = store
        self.purpose = purpose
        self.limit = limit
        self.window_seconds = window_seconds

    def _key(self, identifier: str) -> str:
        return f"{self.purpose}_attempts:{identifier}"

    def attempts(self, identifier: str) -> int:
        raw = self.store.get(self._key(identifier))
        return int(raw) if raw else 0

    def check(self, identifier: str, message: str | None = None) -> int:
        attempts = self.attempts(identifier)
        if attempts >= self.limit:
            raise RateLimitExceeded(message)
        return attempts

    def increment(self, identifier: str) -> int:
        attempts = self.attempts(identifier) + 1
        self.store.set_with_ttl(self._key(identifier), str(attempts), self.window_seconds)
        return attempts

    def clear(self, identifier: str) -> None:
        self.store.delete(self._key(identifier))

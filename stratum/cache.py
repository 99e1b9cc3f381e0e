import asyncio
import enum
import json
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable, Iterator

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from stratum.errors import FormatError

logger = logging.getLogger(__name__)


class CacheMarker(enum.Enum):
    """
    The non-content states a cache slot can be in.
    """

    # Never seen (or evicted)
    MISSING = "missing"
    # Known to exist on the server, content deliberately not kept
    EXISTS = "exists"


CacheValue = str | CacheMarker

dump_adapter = TypeAdapter(dict[str, str | None])


class LruCache:
    """
    A recency-ordered mapping of hash to text content (or CacheMarker.EXISTS).

    Its size is the total length of all keys plus all retained values; when
    max_size is set, the least recently used entries are dropped until it
    fits again. The entry being written is never the one evicted.
    """

    def __init__(
        self,
        max_size: int | None = None,
        entries: Iterable[tuple[str, CacheValue]] = (),
    ):
        self.max_size = max_size
        self.current_size = 0
        self.data: OrderedDict[str, CacheValue] = OrderedDict()
        for key, value in entries:
            self.set(key, value)

    @staticmethod
    def _value_size(value: CacheValue) -> int:
        return len(value) if isinstance(value, str) else 0

    def lookup(self, key: str) -> CacheValue:
        """
        Returns the cached value, marking it most recently used, or
        CacheMarker.MISSING.
        """
        value = self.data.get(key, CacheMarker.MISSING)
        if value is not CacheMarker.MISSING:
            self.data.move_to_end(key)
        return value

    def set(self, key: str, value: CacheValue) -> None:
        if value is CacheMarker.MISSING:
            raise ValueError("Cannot store MISSING; use delete()")
        existing = self.data.pop(key, CacheMarker.MISSING)
        if existing is CacheMarker.MISSING:
            self.current_size += len(key)
        else:
            self.current_size -= self._value_size(existing)
        self.current_size += self._value_size(value)
        # Evict oldest first; the new key is not in the dict yet so it is safe
        while (
            self.max_size is not None
            and self.current_size > self.max_size
            and self.data
        ):
            oldest_key, oldest_value = self.data.popitem(last=False)
            self.current_size -= len(oldest_key) + self._value_size(oldest_value)
            logger.debug(f"Evicted {oldest_key} from cache")
        self.data[key] = value

    def delete(self, key: str) -> bool:
        value = self.data.pop(key, CacheMarker.MISSING)
        if value is CacheMarker.MISSING:
            return False
        self.current_size -= len(key) + self._value_size(value)
        return True

    def clear(self) -> None:
        self.data.clear()
        self.current_size = 0

    def __contains__(self, key: str) -> bool:
        return key in self.data

    def __len__(self) -> int:
        return len(self.data)

    def keys(self) -> Iterator[str]:
        return iter(list(self.data.keys()))

    def dump(self) -> str:
        """
        Serializes the content mapping to JSON; EXISTS markers become null.
        """
        return json.dumps(
            {
                key: value if isinstance(value, str) else None
                for key, value in self.data.items()
            }
        )

    def restore(self, dumped: str) -> None:
        """
        Loads entries from a previous dump() on top of the current contents.
        """
        try:
            loaded = dump_adapter.validate_json(dumped)
        except PydanticValidationError as e:
            raise FormatError(
                f"cache was not a valid cache (json object of string or null): {e}"
            ) from e
        for key, value in loaded.items():
            self.set(key, CacheMarker.EXISTS if value is None else value)


class DedupingCache(LruCache):
    """
    An LruCache that also coalesces concurrent retrievals of the same hash.

    At most one retrieval per hash is in flight. Callers that arrive while it
    is running share its outcome, success or failure. The pending slot is
    cleared before the outcome is delivered, so a caller arriving after a
    failure starts a brand new retrieval.
    """

    def __init__(
        self,
        max_size: int | None = None,
        entries: Iterable[tuple[str, CacheValue]] = (),
    ):
        super().__init__(max_size, entries)
        self.pending: dict[str, asyncio.Task[bytes]] = {}

    async def get(
        self, key: str, retrieve: Callable[[], Awaitable[bytes]]
    ) -> str | bytes:
        """
        Returns cached text content if we have it, otherwise the raw bytes
        from a (possibly shared) call to retrieve().
        """
        cached = self.lookup(key)
        if isinstance(cached, str):
            return cached
        # No await between the check and the registration below
        task = self.pending.get(key)
        if task is None:
            logger.debug(f"Cache miss for {key}, retrieving")
            task = asyncio.ensure_future(self._retrieve(key, retrieve))
            self.pending[key] = task
        else:
            logger.debug(f"Joining in-flight retrieval of {key}")
        return await asyncio.shield(task)

    async def _retrieve(
        self, key: str, retrieve: Callable[[], Awaitable[bytes]]
    ) -> bytes:
        try:
            return await retrieve()
        finally:
            self.pending.pop(key, None)

    async def settle(self) -> None:
        """
        Waits for every in-flight retrieval to finish, ignoring failures.
        """
        while self.pending:
            await asyncio.gather(*self.pending.values(), return_exceptions=True)

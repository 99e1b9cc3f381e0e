import json
import logging

from pydantic import BaseModel, StrictFloat, StrictInt
from pydantic import ValidationError as PydanticValidationError

from stratum.constants import MAX_SAFE_INTEGER, SCHEMA_VERSION
from stratum.errors import (
    ConflictError,
    FormatError,
    SchemaVersionError,
    TransportError,
    UnsafeGenerationError,
)
from stratum.transports.base import BaseTransport
from stratum.validate import check_hash

logger = logging.getLogger(__name__)

RootPointer = tuple[str, int]


class UpdatedRootSchema(BaseModel):

    hash: str
    generation: StrictInt | StrictFloat


class RootSchema(UpdatedRootSchema):

    schemaVersion: StrictInt


def safe_generation(generation: int | float, label: str = "generation") -> int:
    """
    Returns the generation as an int if it is whole and fits in 53 bits.
    """
    if isinstance(generation, float):
        if not generation.is_integer():
            raise UnsafeGenerationError(f"{label} {generation} was not an integer")
        generation = int(generation)
    if abs(generation) > MAX_SAFE_INTEGER:
        raise UnsafeGenerationError(f"{label} {generation} was not a safe integer")
    return generation


def _load(model: type[BaseModel], raw: str, what: str):
    try:
        return model.model_validate(json.loads(raw))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise FormatError(f"invalid {what}: {e}") from e


class RootHashManager:
    """
    Gets and sets the root pointer, the (hash, generation) pair naming the
    whole tree.

    Updates are optimistic: a put names the generation it is replacing and
    the server refuses it (412) if someone else got there first. We keep the
    last pointer we saw so reads can skip a round trip; a successful put
    replaces it and a conflict drops it.
    """

    def __init__(self, transport: BaseTransport, sync_host: str):
        self.transport = transport
        self.sync_host = sync_host.rstrip("/")
        self.cached: RootPointer | None = None

    async def get(self, use_cache: bool = True) -> RootPointer:
        if use_cache and self.cached is not None:
            return self.cached
        response = await self.transport.request(
            "GET", f"{self.sync_host}/sync/v4/root"
        )
        loaded = _load(RootSchema, response.text, "root hash")
        if loaded.schemaVersion != SCHEMA_VERSION:
            raise SchemaVersionError(
                f"schema version {loaded.schemaVersion} not supported"
            )
        generation = safe_generation(loaded.generation)
        logger.debug(f"Fetched root {loaded.hash} at generation {generation}")
        self.cached = (loaded.hash, generation)
        return self.cached

    async def put(
        self, hash: str, generation: int, broadcast: bool = True
    ) -> RootPointer:
        """
        Swings the root to hash, provided the server is still at generation.

        Raises ConflictError if it isn't.
        """
        check_hash(hash, "root hash was not a valid hash")
        if not isinstance(generation, int) or isinstance(generation, bool):
            raise UnsafeGenerationError(f"generation {generation} was not an integer")
        safe_generation(generation)
        body = json.dumps(
            {"hash": hash, "generation": generation, "broadcast": broadcast}
        ).encode("utf-8")
        try:
            response = await self.transport.request(
                "PUT",
                f"{self.sync_host}/sync/v3/root",
                headers={"Content-Type": "application/json"},
                body=body,
            )
        except TransportError as e:
            if e.status == 412:
                self.cached = None
                logger.debug(f"Root put at generation {generation} was stale")
                raise ConflictError(generation) from e
            raise
        loaded = _load(UpdatedRootSchema, response.text, "updated root hash")
        new_generation = safe_generation(loaded.generation, "new generation")
        logger.debug(f"Root is now {loaded.hash} at generation {new_generation}")
        self.cached = (loaded.hash, new_generation)
        return self.cached

    def invalidate(self) -> None:
        self.cached = None

    async def sync_complete(self, generation: int) -> bool:
        """
        Tells the server the generation can be broadcast to other clients.

        The root is already durable by now, so a failure here is reported
        rather than raised.
        """
        try:
            await self.transport.request(
                "POST",
                f"{self.sync_host}/sync/v2/sync-complete",
                headers={"Content-Type": "application/json"},
                body=json.dumps({"generation": generation}).encode("utf-8"),
            )
        except TransportError as e:
            logger.warning(f"Sync complete for generation {generation} failed: {e}")
            return False
        return True

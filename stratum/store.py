import asyncio
import base64
import json
import logging
from typing import Any, NamedTuple

import google_crc32c

from stratum.cache import CacheMarker, DedupingCache
from stratum.entries import file_entry, list_entry, parse_entries, serialize_entries
from stratum.errors import FormatError
from stratum.metadata import ShapeChecker
from stratum.transports.base import BaseTransport
from stratum.types import RawEntry
from stratum.validate import check_hash

logger = logging.getLogger(__name__)


class PendingUpload(NamedTuple):
    """
    The entry an upload will produce, available immediately, plus the task
    that finishes the upload.

    The entry's hash can be used to build parent lists straight away; nothing
    references it server-side until a root containing it is committed, so the
    task only has to be done before that.
    """

    entry: RawEntry
    done: asyncio.Future[None]


def upload_checksum(content: bytes) -> str:
    """
    Integrity header value for an upload: base64 of the big-endian CRC32C.
    """
    crc = google_crc32c.value(content)
    return "crc32c=" + base64.b64encode(crc.to_bytes(4, "big")).decode("ascii")


def dump_json(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class HashStore:
    """
    Reads and writes content-addressed blobs, going through the cache.

    Text blobs (entry lists and JSON metadata) are assumed small and kept in
    the cache in full; binary blobs only get recorded as existing, so we never
    upload them twice but do re-download them.
    """

    def __init__(
        self,
        transport: BaseTransport,
        cache: DedupingCache,
        sync_host: str,
        verify: bool = True,
    ):
        self.transport = transport
        self.cache = cache
        self.sync_host = sync_host.rstrip("/")
        self.verify = verify

    def file_url(self, hash: str) -> str:
        return f"{self.sync_host}/sync/v3/files/{hash}"

    async def _download(self, hash: str) -> bytes:
        response = await self.transport.request("GET", self.file_url(hash))
        return response.content

    def _verifying(self, verify: bool | None) -> bool:
        return self.verify if verify is None else verify

    def _check(self, hash: str, verify: bool | None) -> None:
        if self._verifying(verify):
            check_hash(hash)

    async def get_bytes(self, hash: str, verify: bool | None = None) -> bytes:
        self._check(hash, verify)
        result = await self.cache.get(hash, lambda: self._download(hash))
        if isinstance(result, str):
            return result.encode("utf-8")
        # Remember it exists, but don't hold on to possibly large bytes
        if hash not in self.cache:
            self.cache.set(hash, CacheMarker.EXISTS)
        return result

    async def get_text(self, hash: str, verify: bool | None = None) -> str:
        self._check(hash, verify)
        result = await self.cache.get(hash, lambda: self._download(hash))
        if isinstance(result, str):
            return result
        try:
            text = result.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FormatError(f"content of {hash} was not valid utf-8") from e
        self.cache.set(hash, text)
        return text

    async def get_entries(self, hash: str, verify: bool | None = None) -> list[RawEntry]:
        return parse_entries(await self.get_text(hash, verify), self._verifying(verify))

    async def get_json(
        self,
        hash: str,
        checker: ShapeChecker | None = None,
        verify: bool | None = None,
    ) -> Any:
        """
        Fetches a JSON blob and, when verifying, runs it past the checker.
        """
        raw = await self.get_text(hash, verify)
        try:
            loaded = json.loads(raw)
        except json.JSONDecodeError as e:
            raise FormatError(f"content of {hash} was not valid json: {e}") from e
        if checker is not None and self._verifying(verify):
            checker(loaded)
        return loaded

    async def _upload(self, hash: str, filename: str, content: bytes) -> None:
        # Content addressing means a known hash already holds these bytes
        if hash in self.cache:
            logger.debug(f"Skipping upload of {filename}; {hash} already known")
            return
        await self.transport.request(
            "PUT",
            self.file_url(hash),
            headers={
                "rm-filename": filename,
                "x-goog-hash": upload_checksum(content),
            },
            body=content,
        )
        logger.debug(f"Uploaded {filename} as {hash} ({len(content)} bytes)")
        if hash not in self.cache:
            self.cache.set(hash, CacheMarker.EXISTS)

    def put_file(self, file_id: str, content: bytes) -> PendingUpload:
        """
        Starts uploading raw bytes under the display name file_id.
        """
        entry = file_entry(file_id, content)
        done = asyncio.ensure_future(self._upload(entry["hash"], file_id, content))
        return PendingUpload(entry, done)

    def put_text(self, file_id: str, text: str) -> PendingUpload:
        entry, upload = self.put_file(file_id, text.encode("utf-8"))

        async def cache_text() -> None:
            await upload
            self.cache.set(entry["hash"], text)

        return PendingUpload(entry, asyncio.ensure_future(cache_text()))

    def put_json(
        self,
        file_id: str,
        payload: Any,
        checker: ShapeChecker | None = None,
    ) -> PendingUpload:
        if checker is not None and self.verify:
            checker(payload)
        return self.put_text(file_id, dump_json(payload))

    def put_entries(self, list_id: str, entries: list[RawEntry]) -> PendingUpload:
        """
        Starts uploading an entry list; the returned entry is the list-type
        entry pointing at it.
        """
        entry = list_entry(list_id, entries)
        text = serialize_entries(entries)
        encoded = text.encode("utf-8")
        upload = asyncio.ensure_future(
            self._upload(entry["hash"], f"{list_id}.docSchema", encoded)
        )

        async def cache_text() -> None:
            await upload
            self.cache.set(entry["hash"], text)

        return PendingUpload(entry, asyncio.ensure_future(cache_text()))

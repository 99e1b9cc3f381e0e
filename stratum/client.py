import asyncio
import io
import logging
import zipfile
from typing import Any

from stratum.cache import DedupingCache
from stratum.config import ClientOptions
from stratum.constants import EntryType
from stratum.errors import (
    DocumentMetadataMissingError,
    DocumentNotFoundError,
    DocumentRawFileError,
    FileNotFoundInItemError,
)
from stratum.metadata import ShapeChecker, check_content, check_metadata
from stratum.root import RootHashManager, RootPointer
from stratum.store import HashStore
from stratum.transports import BaseTransport, HttpTransport
from stratum.tree import TreeMutator, find_entry
from stratum.types import ItemSummary, RawEntry

logger = logging.getLogger(__name__)


class SyncClient:
    """
    Everything wired together: one transport, one cache, and the store, root
    manager and tree mutator on top of them.

    All hosts, the transport and the initial cache are passed in here; there
    is no module-level state.
    """

    def __init__(
        self,
        options: ClientOptions | None = None,
        transport: BaseTransport | None = None,
        cache: str | None = None,
        metadata_checker: ShapeChecker | None = check_metadata,
        content_checker: ShapeChecker | None = check_content,
    ):
        self.options = options or ClientOptions()
        self.transport = transport or HttpTransport(token=self.options.token)
        self.cache = DedupingCache(self.options.max_cache_size)
        if cache is not None:
            self.cache.restore(cache)
        self.store = HashStore(
            self.transport, self.cache, self.options.sync_host, self.options.verify
        )
        self.root = RootHashManager(self.transport, self.options.sync_host)
        self.tree = TreeMutator(
            self.store, self.root, metadata_checker, content_checker
        )
        self.metadata_checker = metadata_checker
        self.content_checker = content_checker

    async def __aenter__(self) -> "SyncClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.transport.close()

    ### Reading ###

    async def get_root(self, refresh: bool = False) -> RootPointer:
        return await self.root.get(use_cache=not refresh)

    async def list_ids(self, refresh: bool = False) -> list[RawEntry]:
        root_hash, _ = await self.root.get(use_cache=not refresh)
        return await self.store.get_entries(root_hash)

    async def _item_children(self, item_id: str, refresh: bool) -> list[RawEntry]:
        entries = await self.list_ids(refresh)
        index = find_entry(entries, item_id)
        if index is None:
            raise DocumentNotFoundError(item_id)
        if entries[index]["type"] != EntryType.LIST:
            raise DocumentRawFileError(item_id)
        return await self.store.get_entries(entries[index]["hash"])

    @staticmethod
    def _child(children: list[RawEntry], item_id: str, extension: str) -> RawEntry:
        for child in children:
            if child["id"].endswith(f".{extension}"):
                return child
        if extension == "metadata":
            raise DocumentMetadataMissingError(item_id)
        raise FileNotFoundInItemError(item_id, extension)

    async def get_metadata(self, item_id: str, refresh: bool = False) -> Any:
        children = await self._item_children(item_id, refresh)
        child = self._child(children, item_id, "metadata")
        return await self.store.get_json(child["hash"], self.metadata_checker)

    async def get_content(self, item_id: str, refresh: bool = False) -> Any:
        children = await self._item_children(item_id, refresh)
        child = self._child(children, item_id, "content")
        return await self.store.get_json(child["hash"], self.content_checker)

    async def get_file(
        self, item_id: str, extension: str, refresh: bool = False
    ) -> bytes:
        children = await self._item_children(item_id, refresh)
        return await self.store.get_bytes(self._child(children, item_id, extension)["hash"])

    async def get_pdf(self, item_id: str, refresh: bool = False) -> bytes:
        return await self.get_file(item_id, "pdf", refresh)

    async def get_epub(self, item_id: str, refresh: bool = False) -> bytes:
        return await self.get_file(item_id, "epub", refresh)

    async def get_document(self, item_id: str, refresh: bool = False) -> bytes:
        """
        Zips every file of an item, each stored under its own id.
        """
        children = await self._item_children(item_id, refresh)
        contents = await asyncio.gather(
            *(self.store.get_bytes(child["hash"]) for child in children)
        )
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for child, content in zip(children, contents):
                archive.writestr(child["id"], content)
        return buffer.getvalue()

    async def _summarize(self, entry: RawEntry) -> ItemSummary:
        children = await self.store.get_entries(entry["hash"])
        child = self._child(children, entry["id"], "metadata")
        metadata = await self.store.get_json(child["hash"], self.metadata_checker)
        return {
            "id": entry["id"],
            "hash": entry["hash"],
            "visible_name": metadata["visibleName"],
            "parent": metadata["parent"],
            "pinned": metadata.get("pinned", False),
            "last_modified": metadata["lastModified"],
            "type": metadata["type"],
        }

    async def list_items(self, refresh: bool = False) -> list[ItemSummary]:
        """
        Lists every item in the root along with its display metadata.
        """
        entries = await self.list_ids(refresh)
        return [
            await self._summarize(entry)
            for entry in entries
            if entry["type"] == EntryType.LIST
        ]

    ### Tree edits ###

    async def move(self, item_id: str, parent: str, **kwargs):
        return await self.tree.move(item_id, parent, **kwargs)

    async def delete(self, item_id: str, **kwargs):
        return await self.tree.delete(item_id, **kwargs)

    async def rename(self, item_id: str, visible_name: str, **kwargs):
        return await self.tree.rename(item_id, visible_name, **kwargs)

    async def star(self, item_id: str, pinned: bool = True, **kwargs):
        return await self.tree.star(item_id, pinned, **kwargs)

    async def bulk_move(self, item_ids: list[str], parent: str, **kwargs):
        return await self.tree.bulk_move(item_ids, parent, **kwargs)

    async def bulk_delete(self, item_ids: list[str], **kwargs):
        return await self.tree.bulk_delete(item_ids, **kwargs)

    async def create_folder(self, visible_name: str, parent: str = "", **kwargs):
        return await self.tree.create_folder(visible_name, parent, **kwargs)

    async def upload_pdf(self, visible_name: str, data: bytes, parent: str = "", **kwargs):
        return await self.tree.upload_pdf(visible_name, data, parent, **kwargs)

    async def upload_epub(
        self, visible_name: str, data: bytes, parent: str = "", **kwargs
    ):
        return await self.tree.upload_epub(visible_name, data, parent, **kwargs)

    ### Cache ###

    async def dump_cache(self) -> str:
        """
        Waits for in-flight retrievals, then serializes the cache.
        """
        await self.cache.settle()
        return self.cache.dump()

    def clear_cache(self) -> None:
        self.cache.clear()

    async def prune_cache(self, refresh: bool = False) -> int:
        """
        Drops every cached hash that the current root can't reach.

        Returns how many entries were dropped.
        """
        root_hash, _ = await self.root.get(use_cache=not refresh)
        reachable = {root_hash}
        # Walk level by level; in practice the tree is only two deep
        frontier = [root_hash]
        while frontier:
            next_frontier = []
            for list_hash in frontier:
                for entry in await self.store.get_entries(list_hash):
                    reachable.add(entry["hash"])
                    if entry["type"] == EntryType.LIST:
                        next_frontier.append(entry["hash"])
            frontier = next_frontier
        pruned = 0
        for key in self.cache.keys():
            if key not in reachable:
                self.cache.delete(key)
                pruned += 1
        logger.debug(f"Pruned {pruned} unreachable cache entries")
        return pruned

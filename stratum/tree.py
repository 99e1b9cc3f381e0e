"""
Tree edits: every change to the tree is a new set of blobs plus a root swing.

Each mutation snapshots the root pointer, reads the lists it needs, builds
replacement metadata and lists bottom-up (item list, then root list), waits
for all of those uploads, and finally puts the new root hash against the
generation it started from. If that put conflicts, nothing has changed
server-side; the uploaded blobs are simply unreferenced.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Literal, TypeVar

from stratum.constants import ROOT_ID, ROOT_LIST_ID, TRASH_ID, EntryType
from stratum.errors import (
    ConflictError,
    DestinationMetadataMissingError,
    DestinationNotCollectionError,
    DestinationNotFoundError,
    DestinationRawFileError,
    DocumentMetadataMissingError,
    DocumentNotFoundError,
    DocumentRawFileError,
    ValidationError,
)
from stratum.metadata import PutOptions, ShapeChecker, check_content, check_metadata
from stratum.root import RootHashManager
from stratum.store import HashStore, PendingUpload
from stratum.types import CommitResult, RawEntry
from stratum.validate import check_item_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


def find_entry(entries: list[RawEntry], item_id: str) -> int | None:
    for index, entry in enumerate(entries):
        if entry["id"] == item_id:
            return index
    return None


def find_metadata(entries: list[RawEntry]) -> int | None:
    for index, entry in enumerate(entries):
        if entry["id"].endswith(".metadata"):
            return index
    return None


def timestamp() -> str:
    """
    Milliseconds since the epoch, as the string the metadata format wants.
    """
    return str(int(time.time() * 1000))


class LoadedItem:
    """
    An item's list and decoded metadata, read before any edits are uploaded.
    """

    def __init__(
        self,
        entry: RawEntry,
        children: list[RawEntry],
        metadata_index: int,
        metadata: dict[str, Any],
    ):
        self.entry = entry
        self.children = children
        self.metadata_index = metadata_index
        self.metadata = metadata


class TreeMutator:
    """
    Moves, renames, deletes and creates items by rewriting the hash tree.
    """

    def __init__(
        self,
        store: HashStore,
        root: RootHashManager,
        metadata_checker: ShapeChecker | None = check_metadata,
        content_checker: ShapeChecker | None = check_content,
    ):
        self.store = store
        self.root = root
        self.metadata_checker = metadata_checker
        self.content_checker = content_checker

    @property
    def verify(self) -> bool:
        return self.store.verify

    ### Reading ###

    async def _snapshot(self, refresh: bool) -> tuple[str, int, list[RawEntry]]:
        root_hash, generation = await self.root.get(use_cache=not refresh)
        entries = await self.store.get_entries(root_hash)
        return root_hash, generation, entries

    def _locate(self, entries: list[RawEntry], item_id: str) -> int:
        index = find_entry(entries, item_id)
        if index is None:
            raise DocumentNotFoundError(item_id)
        if entries[index]["type"] != EntryType.LIST:
            raise DocumentRawFileError(item_id)
        return index

    async def _check_destination(self, entries: list[RawEntry], parent: str) -> None:
        """
        Makes sure parent names a collection; root and trash always do.
        """
        if parent in (ROOT_ID, TRASH_ID):
            return
        index = find_entry(entries, parent)
        if index is None:
            raise DestinationNotFoundError(parent)
        destination = entries[index]
        if destination["type"] != EntryType.LIST:
            raise DestinationRawFileError(parent)
        children = await self.store.get_entries(destination["hash"])
        metadata_index = find_metadata(children)
        if metadata_index is None:
            raise DestinationMetadataMissingError(parent)
        metadata = await self.store.get_json(
            children[metadata_index]["hash"], self.metadata_checker
        )
        if metadata.get("type") != "CollectionType":
            raise DestinationNotCollectionError(parent)

    async def _load(self, entry: RawEntry) -> LoadedItem:
        children = await self.store.get_entries(entry["hash"])
        metadata_index = find_metadata(children)
        if metadata_index is None:
            raise DocumentMetadataMissingError(entry["id"])
        metadata = await self.store.get_json(
            children[metadata_index]["hash"], self.metadata_checker
        )
        return LoadedItem(entry, children, metadata_index, metadata)

    ### Writing ###

    def _rewrite(self, item: LoadedItem, update: dict[str, Any]) -> PendingUpload:
        """
        Uploads new metadata for the item and a new item list around it.
        """
        metadata_entry = item.children[item.metadata_index]
        new_metadata, metadata_done = self.store.put_json(
            metadata_entry["id"], {**item.metadata, **update}, self.metadata_checker
        )
        children = list(item.children)
        children[item.metadata_index] = new_metadata
        new_list, list_done = self.store.put_entries(item.entry["id"], children)
        return PendingUpload(new_list, asyncio.gather(metadata_done, list_done))

    async def _commit(
        self,
        root_entries: list[RawEntry],
        generation: int,
        uploads: Iterable[Awaitable[Any]],
        hashes: dict[str, str],
        sync: bool,
    ) -> CommitResult:
        new_root, root_done = self.store.put_entries(ROOT_LIST_ID, root_entries)
        # Everything must be durable before the root can point at it
        await asyncio.gather(*uploads, root_done)
        root_hash, new_generation = await self.root.put(new_root["hash"], generation)
        logger.info(
            f"Committed root {root_hash} at generation {new_generation} "
            f"({len(hashes)} item(s) changed)"
        )
        synced = await self.root.sync_complete(new_generation) if sync else False
        return {
            "hash": root_hash,
            "generation": new_generation,
            "hashes": hashes,
            "synced": synced,
        }

    async def _edit(
        self,
        item_ids: Iterable[str],
        update: dict[str, Any],
        destination: str | None,
        refresh: bool,
        sync: bool,
    ) -> CommitResult:
        """
        Applies the same metadata update to every item in one commit.

        Every id is checked (and every item read) before anything is
        uploaded, so a bad id fails the whole batch cleanly.
        """
        unique_ids = list(dict.fromkeys(item_ids))
        _, generation, root_entries = await self._snapshot(refresh)
        indexes = [self._locate(root_entries, item_id) for item_id in unique_ids]
        if destination is not None:
            await self._check_destination(root_entries, destination)
        items = await asyncio.gather(
            *(self._load(root_entries[index]) for index in indexes)
        )
        new_root_entries = list(root_entries)
        uploads = []
        hashes: dict[str, str] = {}
        for index, item in zip(indexes, items):
            new_entry, done = self._rewrite(item, update)
            new_root_entries[index] = new_entry
            uploads.append(done)
            hashes[item.entry["id"]] = new_entry["hash"]
        return await self._commit(new_root_entries, generation, uploads, hashes, sync)

    ### Public operations ###

    async def move(
        self, item_id: str, parent: str, refresh: bool = False, sync: bool = True
    ) -> CommitResult:
        if self.verify:
            check_item_id(item_id)
            check_item_id(parent, "parent must be a valid item id")
        return await self._edit([item_id], {"parent": parent}, parent, refresh, sync)

    async def delete(
        self, item_id: str, refresh: bool = False, sync: bool = True
    ) -> CommitResult:
        """
        Moves the item to the trash.
        """
        return await self.move(item_id, TRASH_ID, refresh, sync)

    async def rename(
        self, item_id: str, visible_name: str, refresh: bool = False, sync: bool = True
    ) -> CommitResult:
        if self.verify:
            check_item_id(item_id)
        return await self._edit(
            [item_id], {"visibleName": visible_name}, None, refresh, sync
        )

    async def star(
        self, item_id: str, pinned: bool = True, refresh: bool = False, sync: bool = True
    ) -> CommitResult:
        if self.verify:
            check_item_id(item_id)
        return await self._edit([item_id], {"pinned": pinned}, None, refresh, sync)

    async def bulk_move(
        self,
        item_ids: Iterable[str],
        parent: str,
        refresh: bool = False,
        sync: bool = True,
    ) -> CommitResult:
        item_ids = list(item_ids)
        if self.verify:
            for item_id in item_ids:
                check_item_id(item_id)
            check_item_id(parent, "parent must be a valid item id")
        return await self._edit(item_ids, {"parent": parent}, parent, refresh, sync)

    async def bulk_delete(
        self, item_ids: Iterable[str], refresh: bool = False, sync: bool = True
    ) -> CommitResult:
        return await self.bulk_move(item_ids, TRASH_ID, refresh, sync)

    async def insert(
        self,
        entry: RawEntry,
        uploads: Iterable[Awaitable[Any]] = (),
        refresh: bool = False,
        sync: bool = True,
    ) -> CommitResult:
        """
        Adds an already-built item list entry to the root and commits it.

        Any uploads the entry depends on can be passed in and are awaited
        before the root moves.
        """
        if entry["type"] != EntryType.LIST:
            raise ValidationError(
                entry["id"], "list entry", "only list entries can be added to the root"
            )
        _, generation, root_entries = await self._snapshot(refresh)
        if find_entry(root_entries, entry["id"]) is not None:
            raise ValidationError(
                entry["id"], "unused id", "an item with this id already exists"
            )
        return await self._commit(
            [*root_entries, entry],
            generation,
            uploads,
            {entry["id"]: entry["hash"]},
            sync,
        )

    async def _create(
        self,
        item_id: str,
        parent: str,
        content: dict[str, Any],
        metadata: dict[str, Any],
        files: dict[str, bytes],
        refresh: bool,
        sync: bool,
    ) -> CommitResult:
        if self.verify:
            check_item_id(parent, "parent must be a valid item id")
            # Both shapes are checked before any upload starts
            if self.content_checker is not None:
                self.content_checker(content)
            if self.metadata_checker is not None:
                self.metadata_checker(metadata)
        _, generation, root_entries = await self._snapshot(refresh)
        await self._check_destination(root_entries, parent)
        # Raw files first, then content, then display metadata
        uploads = [
            self.store.put_file(f"{item_id}.{extension}", data)
            for extension, data in files.items()
        ]
        uploads.append(self.store.put_json(f"{item_id}.content", content))
        uploads.append(self.store.put_json(f"{item_id}.metadata", metadata))
        item_entry, item_done = self.store.put_entries(
            item_id, [upload.entry for upload in uploads]
        )
        return await self._commit(
            [*root_entries, item_entry],
            generation,
            [*(upload.done for upload in uploads), item_done],
            {item_id: item_entry["hash"]},
            sync,
        )

    @staticmethod
    def _new_metadata(
        visible_name: str,
        parent: str,
        item_type: Literal["DocumentType", "CollectionType"],
        now: str,
    ) -> dict[str, Any]:
        return {
            "createdTime": now,
            "lastModified": now,
            "parent": parent,
            "pinned": False,
            "type": item_type,
            "visibleName": visible_name,
        }

    async def create_folder(
        self,
        visible_name: str,
        parent: str = ROOT_ID,
        refresh: bool = False,
        sync: bool = True,
    ) -> CommitResult:
        return await self._create(
            str(uuid.uuid4()),
            parent,
            {"tags": []},
            self._new_metadata(visible_name, parent, "CollectionType", timestamp()),
            {},
            refresh,
            sync,
        )

    async def upload_document(
        self,
        visible_name: str,
        file_type: Literal["pdf", "epub"],
        data: bytes,
        parent: str = ROOT_ID,
        options: PutOptions | None = None,
        refresh: bool = False,
        sync: bool = True,
    ) -> CommitResult:
        """
        Creates a single-page document item around a pdf or epub.
        """
        options = options or PutOptions()
        now = timestamp()
        content: dict[str, Any] = {
            "coverPageNumber": options.cover_page_number,
            "documentMetadata": options.document_metadata(),
            "extraMetadata": dict(options.extra_metadata),
            "fileType": file_type,
            "fontName": options.font_name,
            "formatVersion": 1,
            "lineHeight": options.line_height,
            "margins": options.margins,
            "orientation": options.orientation,
            # The format wants at least one page, even before it has been
            # opened on a device
            "originalPageCount": 1,
            "pageCount": 1,
            "pageTags": [],
            "pages": [str(uuid.uuid4())],
            "redirectionPageMap": [0],
            "sizeInBytes": str(len(data)),
            "tags": [{"name": name, "timestamp": int(now)} for name in options.tags],
            "textAlignment": options.text_alignment,
            "textScale": options.text_scale,
            "zoomMode": options.zoom_mode,
        }
        if options.view_background_filter is not None:
            content["viewBackgroundFilter"] = options.view_background_filter
        metadata = {
            **self._new_metadata(visible_name, parent, "DocumentType", now),
            "pinned": options.pinned,
            "lastOpened": "0",
            "lastOpenedPage": 0,
        }
        return await self._create(
            str(uuid.uuid4()),
            parent,
            content,
            metadata,
            {file_type: data, "pagedata": b"\n"},
            refresh,
            sync,
        )

    async def upload_pdf(
        self, visible_name: str, data: bytes, parent: str = ROOT_ID, **kwargs
    ) -> CommitResult:
        return await self.upload_document(visible_name, "pdf", data, parent, **kwargs)

    async def upload_epub(
        self, visible_name: str, data: bytes, parent: str = ROOT_ID, **kwargs
    ) -> CommitResult:
        return await self.upload_document(visible_name, "epub", data, parent, **kwargs)

    ### Conflicts ###

    async def retrying(
        self, operation: Callable[[], Awaitable[T]], attempts: int = 3
    ) -> T:
        """
        Runs operation, re-running it from a fresh root on ConflictError.

        operation must redo the whole mutation (e.g. a lambda calling move()),
        so each attempt reads the tree again rather than reusing stale edits.
        The conflict from the final attempt is raised as-is.
        """
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        for attempt in range(1, attempts):
            try:
                return await operation()
            except ConflictError:
                self.root.invalidate()
                logger.info(f"Root changed under us (attempt {attempt}/{attempts})")
        return await operation()

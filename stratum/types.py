from typing import Literal, TypedDict

from stratum.constants import EntryType


class RawEntry(TypedDict):
    hash: str
    id: str
    type: EntryType
    subfiles: int
    size: int


ItemType = Literal["DocumentType", "CollectionType", "TemplateType"]


class ItemSummary(TypedDict):
    id: str
    hash: str
    visible_name: str
    parent: str
    pinned: bool
    last_modified: str
    type: ItemType


class CommitResult(TypedDict):
    hash: str
    generation: int
    # Maps each edited item id to its new list hash
    hashes: dict[str, str]
    synced: bool

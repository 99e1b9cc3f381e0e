"""
Entry lists: the directory-like text files that make up the hash tree.

A list is serialized as a schema line ("3") followed by one
"hash:type:id:subfiles:size" line per entry, sorted by id. Its hash is *not*
the digest of that text; it is the digest of the raw 32-byte hashes of its
entries concatenated in id order.
"""

import hashlib
import re
from collections.abc import Iterable

from stratum.constants import SCHEMA_VERSION, EntryType
from stratum.errors import FormatError, SchemaVersionError
from stratum.types import RawEntry
from stratum.validate import check_hash

NUMBER_PATTERN = re.compile(r"^[0-9]+$")


def digest(content: bytes) -> str:
    """
    Content digest used as the identity of every blob.
    """
    return hashlib.sha256(content).hexdigest()


def _parse_number(value: str, line: str) -> int:
    if not NUMBER_PATTERN.fullmatch(value):
        raise FormatError(f"line '{line}' had a non-integer field '{value}'")
    return int(value)


def parse_entries(text: str, verify: bool = False) -> list[RawEntry]:
    """
    Parses entry list text into entries, in the order they appear.

    With verify, every hash field must also be a well-formed hash, so a bad
    list is rejected when read rather than when something rewrites it.
    """
    version, *lines = text.split("\n")
    if version != str(SCHEMA_VERSION):
        raise SchemaVersionError(f"schema version {version} not supported")
    entries: list[RawEntry] = []
    for line in lines:
        if not line:
            continue
        fields = line.split(":")
        if len(fields) != 5:
            raise FormatError(f"line '{line}' was not formatted correctly")
        hash, type_code, item_id, subfiles, size = fields
        if verify:
            check_hash(hash, "entry hash was not a valid hash")
        if type_code == str(int(EntryType.FILE)):
            if _parse_number(subfiles, line) != 0:
                raise FormatError(f"file entry had nonzero subfiles: '{line}'")
            entry_type = EntryType.FILE
        elif type_code == str(int(EntryType.LIST)):
            entry_type = EntryType.LIST
        else:
            raise FormatError(f"invalid type '{type_code}' in line '{line}'")
        entries.append(
            {
                "hash": hash,
                "id": item_id,
                "type": entry_type,
                "subfiles": _parse_number(subfiles, line),
                "size": _parse_number(size, line),
            }
        )
    return entries


def sort_entries(entries: Iterable[RawEntry]) -> list[RawEntry]:
    return sorted(entries, key=lambda entry: entry["id"])


def serialize_entries(entries: Iterable[RawEntry]) -> str:
    records = [f"{SCHEMA_VERSION}\n"]
    for entry in sort_entries(entries):
        records.append(
            f"{entry['hash']}:{int(entry['type'])}:{entry['id']}:"
            f"{entry['subfiles']}:{entry['size']}\n"
        )
    return "".join(records)


def hash_entries(entries: Iterable[RawEntry]) -> str:
    """
    Computes the hash of a list from its entries' raw hash bytes.
    """
    ordered = sort_entries(entries)
    buffer = bytearray(32 * len(ordered))
    for position, entry in enumerate(ordered):
        raw = bytes.fromhex(check_hash(entry["hash"], "entry hash was not a valid hash"))
        buffer[position * 32 : (position + 1) * 32] = raw
    return digest(bytes(buffer))


def file_entry(file_id: str, content: bytes) -> RawEntry:
    return {
        "hash": digest(content),
        "id": file_id,
        "type": EntryType.FILE,
        "subfiles": 0,
        "size": len(content),
    }


def list_entry(list_id: str, entries: Iterable[RawEntry]) -> RawEntry:
    """
    Builds the list-type entry that points at the given children.
    """
    children = list(entries)
    return {
        "hash": hash_entries(children),
        "id": list_id,
        "type": EntryType.LIST,
        "subfiles": len(children),
        "size": sum(child["size"] for child in children),
    }

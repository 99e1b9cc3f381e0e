import hashlib

import pytest

from stratum.constants import EntryType
from stratum.entries import (
    file_entry,
    hash_entries,
    list_entry,
    parse_entries,
    serialize_entries,
)
from stratum.errors import FormatError, SchemaVersionError, ValidationError

HASH_A = "a" * 64
HASH_B = "b" * 64
HASH_C = "0123456789abcdef" * 4


def entry(hash: str, item_id: str, size: int = 1, subfiles: int = 0, type=EntryType.FILE):
    return {"hash": hash, "id": item_id, "type": type, "subfiles": subfiles, "size": size}


class TestParse:
    """
    Tests for reading entry list text.
    """

    def test_example(self):
        entries = parse_entries(
            "3\nhash:0:id:0:1234\nother_hash:80000000:other_id:4:0\n"
        )
        assert entries == [
            {"hash": "hash", "id": "id", "type": EntryType.FILE, "subfiles": 0, "size": 1234},
            {
                "hash": "other_hash",
                "id": "other_id",
                "type": EntryType.LIST,
                "subfiles": 4,
                "size": 0,
            },
        ]

    def test_empty_list(self):
        assert parse_entries("3\n") == []

    def test_blank_lines_skipped(self):
        assert len(parse_entries("3\n\nhash:0:id:0:1\n\n")) == 1

    def test_wrong_schema(self):
        with pytest.raises(SchemaVersionError, match="schema version 4 not supported"):
            parse_entries("4\nhash:0:id:0:1\n")

    def test_wrong_field_count(self):
        with pytest.raises(FormatError, match="was not formatted correctly"):
            parse_entries("3\nhash:0:id:0\n")

    def test_too_many_fields(self):
        with pytest.raises(FormatError, match="was not formatted correctly"):
            parse_entries("3\nhash:0:id:0:1:2\n")

    def test_invalid_type(self):
        with pytest.raises(FormatError, match="invalid type"):
            parse_entries("3\nhash:1:id:0:1\n")

    def test_file_with_subfiles(self):
        with pytest.raises(FormatError, match="nonzero subfiles"):
            parse_entries("3\nhash:0:id:2:1\n")

    def test_non_integer_size(self):
        with pytest.raises(FormatError, match="non-integer"):
            parse_entries("3\nhash:0:id:0:12.5\n")

    def test_huge_size(self):
        """
        Sizes beyond 2**53 must survive parsing exactly.
        """
        size = 2**64 + 1
        [parsed] = parse_entries(f"3\nhash:80000000:id:2:{size}\n")
        assert parsed["size"] == size

    def test_verify_checks_hashes(self):
        with pytest.raises(ValidationError, match="entry hash"):
            parse_entries("3\nhash:0:id:0:1\n", verify=True)
        [parsed] = parse_entries(f"3\n{HASH_A}:0:id:0:1\n", verify=True)
        assert parsed["hash"] == HASH_A


class TestSerialize:
    """
    Tests for writing entry list text.
    """

    def test_sorted_by_id(self):
        text = serialize_entries([entry(HASH_B, "b"), entry(HASH_A, "a")])
        assert text == f"3\n{HASH_A}:0:a:0:1\n{HASH_B}:0:b:0:1\n"

    def test_list_type_code(self):
        text = serialize_entries([entry(HASH_A, "x", 10, 3, EntryType.LIST)])
        assert text == f"3\n{HASH_A}:80000000:x:3:10\n"

    def test_roundtrip_of_sorted_example(self):
        text = "3\nhash:0:id:0:1234\nother_hash:80000000:other_id:4:0\n"
        assert serialize_entries(parse_entries(text)) == text

    def test_unsorted_text_is_reordered(self):
        text = "3\nz_hash:0:z:0:1\na_hash:0:a:0:1\n"
        assert serialize_entries(parse_entries(text)) != text
        assert serialize_entries(parse_entries(text)).startswith("3\na_hash")

    def test_empty(self):
        assert serialize_entries([]) == "3\n"


class TestHashing:
    """
    Tests for the list hash rule.
    """

    def test_concatenated_raw_hashes(self):
        expected = hashlib.sha256(bytes.fromhex(HASH_A) + bytes.fromhex(HASH_B)).hexdigest()
        assert hash_entries([entry(HASH_A, "a"), entry(HASH_B, "b")]) == expected

    def test_order_independent(self):
        entries = [entry(HASH_A, "a"), entry(HASH_B, "b"), entry(HASH_C, "c")]
        assert hash_entries(entries) == hash_entries(list(reversed(entries)))

    def test_not_the_hash_of_serialized_text(self):
        entries = [entry(HASH_A, "a")]
        text_hash = hashlib.sha256(serialize_entries(entries).encode()).hexdigest()
        assert hash_entries(entries) != text_hash

    def test_sorted_by_id_not_hash(self):
        # Ids sort opposite to hashes here
        entries = [entry(HASH_A, "z"), entry(HASH_B, "a")]
        expected = hashlib.sha256(bytes.fromhex(HASH_B) + bytes.fromhex(HASH_A)).hexdigest()
        assert hash_entries(entries) == expected

    def test_empty_list_hash(self):
        assert hash_entries([]) == hashlib.sha256(b"").hexdigest()

    def test_invalid_hash(self):
        with pytest.raises(ValidationError):
            hash_entries([entry("hash", "a")])


class TestEntryBuilders:
    """
    Tests for building file and list entries.
    """

    def test_file_entry(self):
        built = file_entry("doc.pdf", b"content")
        assert built == {
            "hash": hashlib.sha256(b"content").hexdigest(),
            "id": "doc.pdf",
            "type": EntryType.FILE,
            "subfiles": 0,
            "size": 7,
        }

    def test_list_entry_totals(self):
        children = [entry(HASH_A, "a", size=10), entry(HASH_B, "b", size=32)]
        built = list_entry("item", children)
        assert built["type"] == EntryType.LIST
        assert built["subfiles"] == 2
        assert built["size"] == 42
        assert built["hash"] == hash_entries(children)

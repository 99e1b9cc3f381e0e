import asyncio
import json
from typing import Any
from urllib.parse import urlsplit

import pytest

from stratum.client import SyncClient
from stratum.config import ClientOptions
from stratum.constants import ROOT_LIST_ID
from stratum.entries import file_entry, list_entry, parse_entries, serialize_entries
from stratum.store import upload_checksum
from stratum.transports.base import BaseTransport, Response
from stratum.types import RawEntry

FOLDER_ID = "0a1b2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"
DOCUMENT_ID = "5e6f7a8b-9c0d-4e1f-a2b3-c4d5e6f7a8b9"
OTHER_DOCUMENT_ID = "c1d2e3f4-a5b6-4c7d-b8e9-f0a1b2c3d4e5"
MISSING_ID = "f0e1d2c3-b4a5-4968-8776-655443322110"


class Request:
    def __init__(self, method: str, path: str, headers: dict[str, str], body: bytes | None):
        self.method = method
        self.path = path
        self.headers = headers
        self.body = body

    def __repr__(self):
        return f"<Request {self.method} {self.path}>"

    @property
    def json(self) -> Any:
        return json.loads(self.body or b"")


class FakeServer(BaseTransport):
    """
    An in-memory stand-in for the sync service.

    Blobs live in a dict, the root is a (hash, generation) pair, and a root
    put against anything but the current generation gets a 412.
    """

    type_aliases = ["fake"]

    def __init__(self, token: str | None = None):
        super().__init__(token=token)
        self.files: dict[str, bytes] = {}
        self.generation = 1
        self.schema_version = 3
        self.requests: list[Request] = []
        # Responses to hand back (in order) instead of handling requests
        self.canned: list[Response] = []
        # When set, requests wait for it before answering
        self.gate: asyncio.Event | None = None
        self.root_hash = self.add_list(ROOT_LIST_ID, [])["hash"]

    ### Seeding ###

    def add_file(self, file_id: str, content: bytes) -> RawEntry:
        entry = file_entry(file_id, content)
        self.files[entry["hash"]] = content
        return entry

    def add_list(self, list_id: str, entries: list[RawEntry]) -> RawEntry:
        entry = list_entry(list_id, entries)
        self.files[entry["hash"]] = serialize_entries(entries).encode("utf-8")
        return entry

    def root_entries(self) -> list[RawEntry]:
        return parse_entries(self.files[self.root_hash].decode("utf-8"))

    def set_root_entries(self, entries: list[RawEntry]) -> None:
        self.root_hash = self.add_list(ROOT_LIST_ID, entries)["hash"]

    def add_item(
        self,
        item_id: str,
        visible_name: str,
        item_type: str = "DocumentType",
        parent: str = "",
        files: dict[str, bytes] | None = None,
        metadata: bool = True,
    ) -> RawEntry:
        """
        Creates an item list (metadata, content and any files) in the root.
        """
        children = []
        if metadata:
            children.append(
                self.add_file(
                    f"{item_id}.metadata",
                    json.dumps(
                        {
                            "visibleName": visible_name,
                            "parent": parent,
                            "type": item_type,
                            "lastModified": "1700000000000",
                            "pinned": False,
                        }
                    ).encode("utf-8"),
                )
            )
        content: dict[str, Any] = {"tags": []}
        if item_type == "DocumentType":
            content["fileType"] = "pdf"
        children.append(
            self.add_file(f"{item_id}.content", json.dumps(content).encode("utf-8"))
        )
        for extension, data in (files or {}).items():
            children.append(self.add_file(f"{item_id}.{extension}", data))
        entry = self.add_list(item_id, children)
        self.set_root_entries([*self.root_entries(), entry])
        return entry

    def item_metadata(self, item_id: str) -> dict[str, Any]:
        for entry in self.root_entries():
            if entry["id"] == item_id:
                children = parse_entries(self.files[entry["hash"]].decode("utf-8"))
                for child in children:
                    if child["id"].endswith(".metadata"):
                        return json.loads(self.files[child["hash"]])
        raise KeyError(item_id)

    def advance(self) -> None:
        """
        Pretends another client committed, bumping the generation.
        """
        self.generation += 1

    ### Inspection ###

    def requests_for(self, method: str, prefix: str = "") -> list[Request]:
        return [
            r for r in self.requests if r.method == method and r.path.startswith(prefix)
        ]

    @property
    def uploads(self) -> list[Request]:
        return self.requests_for("PUT", "/sync/v3/files/")

    ### Transport ###

    async def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None = None,
    ) -> Response:
        path = urlsplit(url).path
        self.requests.append(Request(method, path, headers, body))
        if self.gate is not None:
            await self.gate.wait()
        if self.canned:
            return self.canned.pop(0)
        return self.handle(method, path, headers, body)

    def handle(
        self, method: str, path: str, headers: dict[str, str], body: bytes | None
    ) -> Response:
        if method == "GET" and path == "/sync/v4/root":
            return self.json_response(
                {
                    "hash": self.root_hash,
                    "generation": self.generation,
                    "schemaVersion": self.schema_version,
                }
            )
        if method == "PUT" and path == "/sync/v3/root":
            update = json.loads(body or b"")
            if update["generation"] != self.generation:
                return Response(412, b'{"message":"precondition failed"}\n', "Precondition Failed")
            if update["hash"] not in self.files:
                return Response(400, b"unknown root hash", "Bad Request")
            self.root_hash = update["hash"]
            self.generation += 1
            return self.json_response({"hash": self.root_hash, "generation": self.generation})
        if path.startswith("/sync/v3/files/"):
            file_hash = path.rsplit("/", 1)[1]
            if method == "GET":
                if file_hash not in self.files:
                    return Response(404, b"not found", "Not Found")
                return Response(200, self.files[file_hash], "OK")
            if method == "PUT":
                if headers.get("x-goog-hash") != upload_checksum(body or b""):
                    return Response(400, b"checksum mismatch", "Bad Request")
                self.files[file_hash] = body or b""
                return Response(200, b"", "OK")
        if method == "POST" and path == "/sync/v2/sync-complete":
            return Response(200, b"", "OK")
        return Response(404, b"no such endpoint", "Not Found")

    @staticmethod
    def json_response(payload: Any) -> Response:
        return Response(200, json.dumps(payload).encode("utf-8"), "OK")


@pytest.fixture
def server():
    return FakeServer(token="user-token")


@pytest.fixture
def client(server):
    return SyncClient(options=ClientOptions(sync_host="https://sync.test"), transport=server)


@pytest.fixture
def populated(server):
    """
    A tree with one folder and two documents at the top level.
    """
    server.add_item(FOLDER_ID, "Folder", item_type="CollectionType")
    server.add_item(DOCUMENT_ID, "Document", files={"pdf": b"%PDF-1.4 document"})
    server.add_item(OTHER_DOCUMENT_ID, "Other", files={"pdf": b"%PDF-1.4 other"})
    return server

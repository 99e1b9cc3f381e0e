from typing import ClassVar

from stratum.errors import TransportError


class Response:
    """
    The parts of an HTTP response the client looks at.
    """

    def __init__(
        self,
        status: int,
        content: bytes = b"",
        reason: str = "",
        headers: dict[str, str] | None = None,
    ):
        self.status = status
        self.content = content
        self.reason = reason
        self.headers = headers or {}

    def __repr__(self):
        return f"<Response {self.status} ({len(self.content)} bytes)>"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")


class BaseTransport:
    """
    Root transport class; implementations only need to provide send().

    Everything else in the client talks to the server through request(),
    which adds authorization and turns non-success statuses into
    TransportError. Timeouts are the implementation's concern.
    """

    type_aliases: list[str] = []

    implementation_registry: ClassVar[dict[str, type["BaseTransport"]]] = {}

    def __init__(self, token: str | None = None):
        self.token = token

    def __init_subclass__(cls) -> None:
        if not cls.type_aliases:
            raise RuntimeError(
                "You must define at least one type alias per transport implementation"
            )
        for alias in cls.type_aliases:
            BaseTransport.implementation_registry[alias] = cls

    @classmethod
    def implementation_get(cls, alias: str) -> type["BaseTransport"]:
        return cls.implementation_registry[alias]

    async def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None = None,
    ) -> Response:
        """
        Performs a single request and returns the response, whatever its
        status.
        """
        raise NotImplementedError()

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> Response:
        all_headers = {}
        if self.token:
            all_headers["Authorization"] = f"Bearer {self.token}"
        all_headers.update(headers or {})
        response = await self.send(method, url, all_headers, body)
        if not response.ok:
            raise TransportError(
                response.status,
                response.reason,
                response.content.decode("utf-8", errors="replace"),
            )
        return response

    async def close(self) -> None:
        pass

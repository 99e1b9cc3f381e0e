import httpx

from .base import BaseTransport, Response


class HttpTransport(BaseTransport):
    """
    Sends requests over the network with an httpx.AsyncClient.
    """

    type_aliases = ["http", "httpx"]

    def __init__(
        self,
        token: str | None = None,
        timeout: float | None = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(token=token)
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def __str__(self):
        return "HTTP (httpx)"

    async def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None = None,
    ) -> Response:
        response = await self.client.request(method, url, headers=headers, content=body)
        return Response(
            status=response.status_code,
            content=response.content,
            reason=response.reason_phrase,
            headers=dict(response.headers),
        )

    async def close(self) -> None:
        await self.client.aclose()

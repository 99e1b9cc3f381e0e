from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import AfterValidator, BaseModel, NonNegativeInt

from stratum.constants import DEFAULT_AUTH_HOST, DEFAULT_SYNC_HOST
from stratum.errors import ConfigError
from stratum.transports import BaseTransport

ExpandedPath = Annotated[Path, AfterValidator(lambda v: v.expanduser())]


class ClientOptions(BaseModel):

    sync_host: str = DEFAULT_SYNC_HOST
    # Used by the token exchange, which lives outside this package
    auth_host: str = DEFAULT_AUTH_HOST
    # Total length of cached keys and text; None is unbounded
    max_cache_size: NonNegativeInt | None = None
    verify: bool = True
    token: str | None = None


class TransportSchema(BaseModel):

    type: str = "http"
    options: dict[str, Any] = {}


class ConfigSchema(BaseModel):

    client: ClientOptions = ClientOptions()
    transport: TransportSchema = TransportSchema()
    cache_path: ExpandedPath | None = None


class Config:
    """
    Config file parser
    """

    def __init__(self, config_path: Path):
        self.config_path = config_path.expanduser().resolve()

        # Read main config in
        with open(self.config_path) as fh:
            self.config_data = ConfigSchema(**(yaml.safe_load(fh.read()) or {}))
        self.options = self.config_data.client

        # Cache path is relative to the config file if not absolute
        self.cache_path: Path | None = None
        if self.config_data.cache_path is not None:
            self.cache_path = self.config_path.parent / self.config_data.cache_path

    def make_transport(self) -> BaseTransport:
        transport_config = self.config_data.transport
        try:
            transport_class = BaseTransport.implementation_get(transport_config.type)
        except KeyError:
            raise ConfigError(
                f"unknown transport type {transport_config.type!r} "
                f"(known: {', '.join(sorted(BaseTransport.implementation_registry))})"
            ) from None
        return transport_class(token=self.options.token, **transport_config.options)

    def load_cache(self) -> str | None:
        if self.cache_path is None or not self.cache_path.is_file():
            return None
        return self.cache_path.read_text()

    def save_cache(self, dumped: str) -> None:
        if self.cache_path is None:
            return
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        self.cache_path.write_text(dumped)

from .base import BaseTransport, Response
from .http import HttpTransport

__all__ = ["BaseTransport", "HttpTransport", "Response"]

"""Platform abstraction layer."""

from .files import atomic_write_text, read_secret_file
from .http import HttpClient, HttpError, MockHttpClient, RealHttpClient
from .process import ProcessError, run

__all__ = [
    # files
    "atomic_write_text",
    "read_secret_file",
    # http
    "HttpClient",
    "HttpError",
    "MockHttpClient",
    "RealHttpClient",
    # process
    "ProcessError",
    "run",
]

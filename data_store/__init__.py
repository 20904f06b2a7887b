"""Session persistence collaborators: remote HTTP backend and local DataFrame store."""

from compression_lib.backend import SessionStore
from data_store.http_store import HttpSessionStore
from data_store.schemas import SCHEMA, reading_to_row
from data_store.store import LocalSessionStore

__all__ = ["SCHEMA", "reading_to_row", "SessionStore", "HttpSessionStore", "LocalSessionStore"]

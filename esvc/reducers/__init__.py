"""Reference reducers: key/value store and search-and-replace text."""

from .kv import KV_REDUCER, delete_key, incr_key, set_key
from .text import TEXT_REDUCER, sear

__all__ = [
    "KV_REDUCER",
    "TEXT_REDUCER",
    "delete_key",
    "incr_key",
    "sear",
    "set_key",
]

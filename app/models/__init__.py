# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import kv_entry

from .kv_entry import KVEntry

__all__ = [
    "KVEntry",
]

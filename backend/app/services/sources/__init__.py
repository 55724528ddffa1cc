"""Source adapters. Importing this package registers every adapter."""

from app.services.sources.base import (  # noqa: F401
    SOURCE_ADAPTERS,
    SourceAdapter,
    get_adapter,
    register_adapter,
)
from app.services.sources.collection_file import CollectionFileAdapter
from app.services.sources.completionator import CompletionatorAdapter
from app.services.sources.steam import SteamLibraryAdapter
from app.services.sources.xbox import XboxLibraryAdapter

register_adapter(SteamLibraryAdapter())
register_adapter(XboxLibraryAdapter())
register_adapter(CompletionatorAdapter())
register_adapter(CollectionFileAdapter())

"""All models must be imported here so SQLAlchemy registers them."""

from app.models.catalog import Game, GamePlatform, Platform  # noqa: F401
from app.models.imports import ExternalCatalogMap, ImportItem, ImportSession  # noqa: F401
from app.models.membership import CollectionEntry, Completion, NowPlayingEntry  # noqa: F401

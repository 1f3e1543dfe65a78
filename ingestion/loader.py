"""Content repository loader: JSON collection files -> typed entities."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import TypeAdapter

from core.config import settings
from core.models import Entity, SourceKind

logger = logging.getLogger(__name__)

# Collection file per entity kind, relative to the content directory.
COLLECTION_FILES: dict[SourceKind, str] = {
    SourceKind.GUIDE: "guide/index.json",
    SourceKind.PENALTY: "penalties/index.json",
    SourceKind.COMMAND: "commands/index.json",
    SourceKind.PROCEDURE: "procedures/index.json",
}

_entity_adapter: TypeAdapter[Entity] = TypeAdapter(Entity)


def load_collection(path: str | Path, kind: SourceKind) -> list[Entity]:
    """Load one `{"items": [...]}` collection file, sorted by `order`.

    Items don't carry their kind in the file; it is taken from the collection.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    items = data.get("items", []) if isinstance(data, dict) else data
    entities = [
        _entity_adapter.validate_python({**item, "kind": kind.value}) for item in items
    ]
    entities.sort(key=lambda e: e.order)

    logger.info("Loaded %d %s entities from %s", len(entities), kind.value, path)
    return entities


def load_content(content_dir: str | Path | None = None) -> list[Entity]:
    """Load every collection under content_dir.

    Entities come back grouped by kind (guide, penalty, command, procedure),
    each group in `order`. A missing collection file is logged and skipped.
    """
    if content_dir is None:
        content_dir = settings.content_dir

    root = Path(content_dir)
    if not root.is_dir():
        raise FileNotFoundError(f"Content directory not found: {content_dir}")

    entities: list[Entity] = []
    for kind, relative in COLLECTION_FILES.items():
        path = root / relative
        if not path.exists():
            logger.warning("No %s collection at %s", kind.value, path)
            continue
        entities.extend(load_collection(path, kind))

    return entities

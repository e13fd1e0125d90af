"""
Tag catalogue — the fixed set of tag ids an idea may carry.

Loaded from ``settings.TAGS_CONFIG_PATH`` (``{"tags": [{"id", "name", "color"}]}``),
falling back to a built-in list when the file is missing or malformed.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from app.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TAGS: List[Dict[str, str]] = [
    {"id": "technology", "name": "Technology", "color": "#3b82f6"},
    {"id": "business", "name": "Business", "color": "#10b981"},
    {"id": "design", "name": "Design", "color": "#f59e0b"},
    {"id": "marketing", "name": "Marketing", "color": "#ef4444"},
    {"id": "product", "name": "Product", "color": "#8b5cf6"},
    {"id": "research", "name": "Research", "color": "#06b6d4"},
    {"id": "innovation", "name": "Innovation", "color": "#f97316"},
    {"id": "improvement", "name": "Improvement", "color": "#84cc16"},
]


def _read_tag_file(path: Path) -> List[Dict[str, str]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    tags = data.get("tags")
    if not isinstance(tags, list):
        raise ValueError("Invalid tag configuration: tags must be an array")
    for index, tag in enumerate(tags):
        if not isinstance(tag.get("id"), str) or not tag["id"]:
            raise ValueError(f"Invalid tag at index {index}: missing or invalid id")
        if not isinstance(tag.get("name"), str) or not tag["name"]:
            raise ValueError(f"Invalid tag at index {index}: missing or invalid name")
    return tags


@lru_cache(maxsize=None)
def load_tags(path: Optional[str] = None) -> Tuple[Dict[str, str], ...]:
    config_path = Path(path or settings.TAGS_CONFIG_PATH)
    try:
        tags = _read_tag_file(config_path)
        logger.info(f"Loaded {len(tags)} tags from {config_path}")
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load tags config ({e}), using defaults")
        tags = DEFAULT_TAGS
    return tuple(tags)


def valid_tag_ids() -> List[str]:
    return [tag["id"] for tag in load_tags()]


def validate_tags(tags: List[str]) -> List[str]:
    """Return the tags that are not in the catalogue (empty list → all valid)."""
    known = set(valid_tag_ids())
    return [tag for tag in tags if tag not in known]

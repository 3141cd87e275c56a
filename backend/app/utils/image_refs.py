import json
import logging
from collections.abc import Iterable
from typing import Optional

logger = logging.getLogger(__name__)


def _clean(refs: Iterable[object]) -> list[str]:
    cleaned = []
    for ref in refs:
        if ref is None:
            continue
        value = str(ref).strip()
        if value:
            cleaned.append(value)
    return cleaned


def encode_image_refs(refs: Optional[Iterable[str]]) -> Optional[str]:
    """Serialize an ordered sequence of image references for a TEXT column.

    Empty and absent sequences are stored as NULL.
    """
    if refs is None:
        return None
    if isinstance(refs, (str, bytes)):
        raise TypeError("image references must be a sequence, not a single string")
    items = _clean(refs)
    if not items:
        return None
    return json.dumps(items, ensure_ascii=False)


def decode_image_refs(raw: Optional[str]) -> list[str]:
    """Parse a stored value back into image references.

    Never raises: anything unreadable decodes to an empty list.
    """
    if raw is None:
        return []
    if isinstance(raw, list):
        return _clean(raw)
    text = str(raw).strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        logger.warning("Unreadable image reference payload, defaulting to empty: %.64s", text)
        return []
    if not isinstance(parsed, list):
        logger.warning("Image reference payload is not a list (type=%s), defaulting to empty", type(parsed).__name__)
        return []
    return _clean(item for item in parsed if isinstance(item, str))

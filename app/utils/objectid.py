from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId


def parse_oid(val) -> Optional[ObjectId]:
    """Return ``val`` as an ObjectId, or None when it is not a valid id."""
    if isinstance(val, ObjectId):
        return val
    try:
        return ObjectId(str(val))
    except (InvalidId, TypeError):
        return None

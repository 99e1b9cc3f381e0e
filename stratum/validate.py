import re

from stratum.constants import ROOT_ID, TRASH_ID
from stratum.errors import ValidationError

HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")
ID_PATTERN = re.compile(
    r"^([0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}|trash|)$"
)


def is_hash(value: str) -> bool:
    return HASH_PATTERN.fullmatch(value) is not None


def is_item_id(value: str) -> bool:
    return value in (ROOT_ID, TRASH_ID) or ID_PATTERN.fullmatch(value) is not None


def check_hash(value: str, message: str = "hash was not a valid hash") -> str:
    """
    Returns the hash unchanged, or raises ValidationError naming it.
    """
    if not is_hash(value):
        raise ValidationError(value, HASH_PATTERN.pattern, message)
    return value


def check_item_id(value: str, message: str = "id was not a valid item id") -> str:
    if not is_item_id(value):
        raise ValidationError(value, ID_PATTERN.pattern, message)
    return value

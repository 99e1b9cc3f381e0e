import enum

DEFAULT_SYNC_HOST = "https://eu.tectonic.remarkable.com"
DEFAULT_AUTH_HOST = "https://webapp-prod.cloud.remarkable.engineering"

# Both entry lists and the root pointer must carry this version
SCHEMA_VERSION = 3

# Largest integer a generation may be (2**53 - 1)
MAX_SAFE_INTEGER = 9007199254740991

ROOT_ID = ""
TRASH_ID = "trash"
ROOT_LIST_ID = "root"


class EntryType(enum.IntEnum):
    FILE = 0
    LIST = 80000000

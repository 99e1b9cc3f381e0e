class SyncError(Exception):
    """
    Base class for everything this client raises on purpose.
    """


class ValidationError(SyncError):
    """
    A hash or id did not match its expected pattern. Raised before anything
    goes over the wire.
    """

    def __init__(self, field: str, pattern: str, message: str):
        super().__init__(f"{message}: {field!r} did not match {pattern}")
        self.field = field
        self.pattern = pattern


class FormatError(SyncError):
    """
    Something we fetched or were handed couldn't be parsed.
    """


class SchemaVersionError(FormatError):
    pass


class UnsafeGenerationError(FormatError):
    pass


class MetadataError(FormatError):
    pass


class TransportError(SyncError):
    """
    The server answered with a non-success status.
    """

    def __init__(self, status: int, reason: str, body: str):
        super().__init__(f"failed request ({status} {reason}): {body}")
        self.status = status
        self.reason = reason
        self.body = body


class ConflictError(SyncError):
    """
    The root generation we tried to overwrite is no longer current.

    The fix is to fetch the root again and recompute the edit from that
    snapshot; blindly putting again would overwrite someone else's change.
    """

    def __init__(self, generation: int | None = None):
        super().__init__("root generation was stale; fetch the root and try again")
        self.generation = generation


class ItemNotFoundError(SyncError):

    condition = "item not found"

    def __init__(self, item_id: str):
        super().__init__(f"{self.condition}: {item_id}")
        self.item_id = item_id


class DocumentNotFoundError(ItemNotFoundError):
    condition = "document not found"


class DocumentRawFileError(ItemNotFoundError):
    condition = "document was a raw file"


class DocumentMetadataMissingError(ItemNotFoundError):
    condition = "document didn't have metadata"


class DestinationNotFoundError(ItemNotFoundError):
    condition = "destination id not found"


class DestinationRawFileError(ItemNotFoundError):
    condition = "destination id was a raw file"


class DestinationMetadataMissingError(ItemNotFoundError):
    condition = "destination id didn't have metadata"


class DestinationNotCollectionError(ItemNotFoundError):
    condition = "destination id wasn't a collection"


class FileNotFoundInItemError(ItemNotFoundError):
    """
    The item exists but has no child file with the requested extension.
    """

    def __init__(self, item_id: str, extension: str):
        self.condition = f"couldn't find {extension} for"
        super().__init__(item_id)
        self.extension = extension


class ConfigError(SyncError):
    """
    The config file names something that doesn't exist.
    """

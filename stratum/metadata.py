"""
Shape checks for the JSON blobs stored alongside each item.

The payloads themselves are opaque to the tree code: it reads them as dicts,
changes a key or two, and writes them back with every other key intact. These
models only check that the keys the tree code relies on are present and have
the right types.
"""

from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from stratum.errors import MetadataError
from stratum.types import ItemType

ShapeChecker = Callable[[Any], None]


class ItemMetadata(BaseModel):
    """
    The ".metadata" file of an item.
    """

    model_config = ConfigDict(extra="allow")

    visibleName: str
    parent: str
    type: ItemType
    lastModified: str
    pinned: bool = False


class CollectionContent(BaseModel):
    model_config = ConfigDict(extra="allow")

    tags: list[dict[str, Any]] = []
    fileType: None = None


class DocumentContent(BaseModel):
    model_config = ConfigDict(extra="allow")

    fileType: Literal["epub", "pdf", "notebook"]


class TemplateContent(BaseModel):
    model_config = ConfigDict(extra="allow")

    templateVersion: str


class PutOptions(BaseModel):
    """
    Display settings for a newly uploaded pdf or epub.

    Where an item goes (parent) and how the commit runs (refresh, sync) are
    arguments of the upload itself, not options.
    """

    pinned: bool = False
    # 0 for the first page, -1 for the last visited one
    cover_page_number: int = -1
    # These four end up in the content's documentMetadata
    authors: list[str] | None = None
    title: str | None = None
    publication_date: str | None = None
    publisher: str | None = None
    extra_metadata: dict[str, str] = {}
    font_name: str = ""
    line_height: int = -1
    margins: int = 125
    orientation: Literal["portrait", "landscape"] = "portrait"
    tags: list[str] = []
    text_alignment: Literal["justify", "left"] = "justify"
    text_scale: float = 1
    zoom_mode: Literal["bestFit", "customFit", "fitToHeight", "fitToWidth"] = "bestFit"
    view_background_filter: Literal["off", "fullpage"] | None = None

    def document_metadata(self) -> dict[str, Any]:
        fields = {
            "authors": self.authors,
            "title": self.title,
            "publicationDate": self.publication_date,
            "publisher": self.publisher,
        }
        return {key: value for key, value in fields.items() if value is not None}


def check_metadata(payload: Any) -> None:
    try:
        ItemMetadata.model_validate(payload)
    except PydanticValidationError as e:
        raise MetadataError(f"invalid metadata: {e}") from e


def check_content(payload: Any) -> None:
    """
    Content is one of three shapes with no discriminator, so try each.
    """
    errors = []
    for name, model in [
        ("collection", CollectionContent),
        ("template", TemplateContent),
        ("document", DocumentContent),
    ]:
        try:
            model.model_validate(payload)
            return
        except PydanticValidationError as e:
            errors.append(f"Couldn't validate as {name} because:\n{e}")
    raise MetadataError("invalid content: " + "\n\nor\n\n".join(errors))

"""
Book metadata models as returned by the Google Books volumes API.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _ProviderModel(BaseModel):
    # Provider payloads use camelCase and carry many fields we do not model.
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ImageLinks(_ProviderModel):
    thumbnail: Optional[str] = None
    small_thumbnail: Optional[str] = Field(default=None, alias="smallThumbnail")


class IndustryIdentifier(_ProviderModel):
    type: str
    identifier: str


class VolumeInfo(_ProviderModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    authors: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    image_links: Optional[ImageLinks] = Field(default=None, alias="imageLinks")
    page_count: Optional[int] = Field(default=None, alias="pageCount")
    published_date: Optional[str] = Field(default=None, alias="publishedDate")
    publisher: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    language: Optional[str] = None
    print_type: Optional[str] = Field(default=None, alias="printType")
    industry_identifiers: List[IndustryIdentifier] = Field(default_factory=list, alias="industryIdentifiers")


class GoogleBook(_ProviderModel):
    """A single volume."""

    id: str
    volume_info: VolumeInfo = Field(default_factory=VolumeInfo, alias="volumeInfo")

    def identifier(self, kind: str) -> Optional[str]:
        """Return the industry identifier of the given type, e.g. ``ISBN_13``."""
        for entry in self.volume_info.industry_identifiers:
            if entry.type == kind:
                return entry.identifier
        return None


class BookSearchResult(_ProviderModel):
    """One page of volume search results."""

    items: List[GoogleBook] = Field(default_factory=list)
    total_items: int = Field(default=0, alias="totalItems")

"""
Database Schemas for the ArcXZone catalog (MongoDB)

Each Pydantic model corresponds to a collection. The collection name is the
lowercased class name (e.g., Content -> "content").

Attributes are snake_case in Python and camelCase on the wire and in storage
(``release_date`` <-> ``releaseDate``). References are stored as ObjectIds.
"""

from datetime import date, datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, get_args
from urllib.parse import urlparse

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

ContentType = Literal["movie", "webseries", "anime"]
Quality = Literal["480p", "720p", "1080p", "4K"]
SourceType = Literal["Official", "SelfHosted", "TelegramBot"]
RequestStatus = Literal["pending", "approved", "rejected", "duplicate", "fulfilled"]
RequestPriority = Literal["low", "medium", "high"]
AdminRole = Literal["admin", "superadmin"]

CONTENT_TYPES = get_args(ContentType)
REQUEST_STATUSES = get_args(RequestStatus)
REQUEST_PRIORITIES = get_args(RequestPriority)

MIN_RELEASE_YEAR = 1888  # first motion picture


def _check_uri(value: str) -> str:
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError("must be a valid uri")
    return value


Uri = Annotated[str, AfterValidator(_check_uri)]


class CatalogModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# Content and its download options
class Content(CatalogModel):
    type: ContentType
    title: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    release_date: date
    runtime: Optional[int] = Field(None, ge=1, description="Minutes")
    genres: List[str] = Field(..., min_length=1)
    rating: Optional[float] = Field(None, ge=0, le=10)
    director: Optional[str] = None
    cast: List[str] = Field(default_factory=list)
    poster_url: Uri
    backdrop_url: Optional[Uri] = None
    tags: List[str] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        doc = super().to_document()
        # BSON has no date type
        d = self.release_date
        doc["releaseDate"] = datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
        return doc


# Optional Content fields that a full replace removes when absent
CONTENT_OPTIONAL_FIELDS = ("runtime", "rating", "director", "backdropUrl")


class Availability(CatalogModel):
    label: str = Field(..., min_length=1)
    quality: Optional[Quality] = None
    language: str = Field(..., min_length=1)
    size: Optional[str] = Field(None, description='e.g. "1.2GB"')
    source_type: SourceType
    url: Uri
    region: Optional[str] = None
    license_note: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        doc = super().to_document()
        doc["quality"] = self.quality
        return doc


AVAILABILITY_OPTIONAL_FIELDS = ("size", "region", "licenseNote")


# User submitted requests
class ContentRequest(CatalogModel):
    content_name: str = Field(..., min_length=1)
    year_of_release: int
    requested_by: str = Field(..., min_length=1)
    content_type: ContentType
    priority: RequestPriority = "medium"

    @field_validator("year_of_release")
    @classmethod
    def _year_in_range(cls, value: int) -> int:
        max_year = date.today().year + 5
        if not MIN_RELEASE_YEAR <= value <= max_year:
            raise ValueError(f"must be between {MIN_RELEASE_YEAR} and {max_year}")
        return value

    def dedupe_key(self) -> str:
        return request_dedupe_key(self.content_name, self.year_of_release, self.content_type)


def request_dedupe_key(content_name: str, year_of_release: int, content_type: str) -> str:
    return f"{content_name.strip().lower()}|{year_of_release}|{content_type}"


class ContentRequestUpdate(CatalogModel):
    model_config = ConfigDict(extra="forbid")

    status: Optional[RequestStatus] = None
    priority: Optional[RequestPriority] = None
    admin_notes: Optional[str] = None

    @field_validator("status", "priority")
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


# Back office accounts
class Admin(CatalogModel):
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash")
    role: AdminRole = "admin"

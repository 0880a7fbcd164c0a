"""
Data models for the realty pipeline.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


UNAVAILABLE_STATUSES = (404, 403, 410)


@dataclass(frozen=True)
class ClassificationRecord:
    """Outcome of classifying a single listing link. Never mutated."""

    link: str
    title: str = ""
    description: str = ""
    is_available: bool = False
    contains_keywords: bool = False
    matched_keywords: Tuple[str, ...] = ()

    @classmethod
    def unavailable(cls, link: str) -> "ClassificationRecord":
        return cls(link=link)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "link": self.link,
            "title": self.title,
            "description": self.description,
            "isAvailable": self.is_available,
            "containsKeywords": self.contains_keywords,
            "matchedKeywords": list(self.matched_keywords),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassificationRecord":
        return cls(
            link=data["link"],
            title=data.get("title") or "",
            description=data.get("description") or "",
            is_available=bool(data.get("isAvailable")),
            contains_keywords=bool(data.get("containsKeywords")),
            matched_keywords=tuple(data.get("matchedKeywords") or ()),
        )


@dataclass
class PageContent:
    """Rendered text fields of a listing page."""

    url: str
    status_code: Optional[int] = None
    title: str = ""
    description: str = ""
    price_text: str = ""
    location_text: str = ""
    listing_parameters: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.title and not self.description

    @property
    def is_unavailable(self) -> bool:
        return self.status_code in UNAVAILABLE_STATUSES or self.is_empty

    def as_text(self) -> str:
        """Listing text handed to the extraction model."""
        return (
            f"Название: {self.title}\n"
            f"Описание: {self.description}\n"
            f"Параметры: {', '.join(self.listing_parameters)}\n"
            f"Местоположение: {self.location_text}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExtractedListing(BaseModel):
    """Structured attributes of a listing, keyed by the Russian field names
    used in the extraction prompt and in the output file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    floor_count: Optional[str] = Field(None, alias="этажность_дома")
    floor: Optional[str] = Field(None, alias="этаж")
    building_type: Optional[str] = Field(None, alias="тип_строения")
    renovation: Optional[str] = Field(None, alias="ремонт")
    layout: Optional[str] = Field(None, alias="планировка")
    room_count: Optional[str] = Field(None, alias="количество_комнат")
    year_built: Optional[str] = Field(None, alias="год_постройки")
    link: str = Field("", alias="ссылка")
    location: Optional[str] = Field(None, alias="местоположение")
    published_at: Optional[str] = Field(None, alias="дата_публикации")
    area: Optional[str] = Field(None, alias="площадь")
    price: str = Field("", alias="цена")
    price_per_area: Optional[str] = Field(None, alias="цена_за_м2")
    price_converted: Optional[str] = Field(None, alias="цена_сум")
    price_per_area_converted: Optional[str] = Field(None, alias="цена_за_м2_сум")

    @field_validator("*", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        # models answer with numbers, lists or nested objects where strings are expected
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "да" if value else "нет"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, (list, tuple)):
            return ", ".join(str(v) for v in value if v is not None) or None
        return str(value)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class Report(BaseModel):
    """Durable snapshot of the link state store."""

    allLinks: List[str] = Field(default_factory=list)
    processedLinks: List[str] = Field(default_factory=list)
    unavailableLinks: List[str] = Field(default_factory=list)
    keywordMatchedLinks: List[str] = Field(default_factory=list)
    nonMatchedLinks: List[str] = Field(default_factory=list)
    readyForUse: List[str] = Field(default_factory=list)
    processedObjects: List[Dict[str, Any]] = Field(default_factory=list)
    lastUpdated: Optional[str] = None

    def records(self) -> List[ClassificationRecord]:
        return [ClassificationRecord.from_dict(o) for o in self.processedObjects]

"""
Provider Configuration Models

IPTV provider configs as stored in the iptv_providers collection.
A config is one of AGTV or Xtream, discriminated by `type`.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class ApiRate(BaseModel):
    """Reservoir settings: `concurrent` requests per `duration_seconds`."""

    concurrent: int = Field(1, ge=1)
    duration_seconds: float = Field(1.0, gt=0)

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_spelling(cls, data: Any) -> Any:
        # Older configs were saved with "concurrect"
        if isinstance(data, dict) and "concurrent" not in data and "concurrect" in data:
            data = {**data, "concurrent": data["concurrect"]}
        return data


class EnabledCategories(BaseModel):
    """Enabled category keys ("{type}-{category_id}") per media type."""

    movies: List[str] = Field(default_factory=list)
    tvshows: List[str] = Field(default_factory=list)

    def for_type(self, media_type: str) -> List[str]:
        return list(getattr(self, media_type, []) or [])


class BaseProviderConfig(BaseModel):
    """Fields shared by every provider type."""

    id: str
    api_url: str = ""
    username: str = ""
    password: str = ""
    enabled: bool = True
    deleted: bool = False
    priority: int = 999
    api_rate: ApiRate = Field(default_factory=ApiRate)
    cleanup_rules: List[Tuple[str, str]] = Field(default_factory=list)
    enabled_categories: EnabledCategories = Field(default_factory=EnabledCategories)
    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        credentials = data.pop("credentials", None)
        if isinstance(credentials, dict):
            data.setdefault("username", credentials.get("username", ""))
            data.setdefault("password", credentials.get("password", ""))

        # Legacy "cleanup" was a {pattern: replacement} mapping, order as declared
        cleanup = data.pop("cleanup", None)
        if isinstance(cleanup, dict) and not data.get("cleanup_rules"):
            data["cleanup_rules"] = list(cleanup.items())

        if data.get("enabled_categories") is None:
            data.pop("enabled_categories", None)
        return data


class AGTVProviderConfig(BaseProviderConfig):
    """AGTV provider (M3U8 listings, IMDB ids)."""

    type: Literal["agtv"] = "agtv"


class XtreamProviderConfig(BaseProviderConfig):
    """Xtream Codes provider (player_api.php)."""

    type: Literal["xtream"] = "xtream"


ProviderConfig = Annotated[
    Union[AGTVProviderConfig, XtreamProviderConfig],
    Field(discriminator="type"),
]

_provider_config_adapter: TypeAdapter = TypeAdapter(ProviderConfig)


def parse_provider_config(document: Dict[str, Any]) -> Union[AGTVProviderConfig, XtreamProviderConfig]:
    """Validate a raw iptv_providers document into its typed config."""
    data = {k: v for k, v in document.items() if k != "_id"}
    return _provider_config_adapter.validate_python(data)

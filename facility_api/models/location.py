from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict

DEFAULT_LOCALE = "en"


class LocationRecord(BaseModel):
    """
    Stored form of a location (one document in the locations container).
    """

    id: str  # primary key and partition key
    name: str
    parent_id: Optional[str] = None  # None only for the root
    retired: bool = False

    model_config = ConfigDict(extra="ignore")


class LocationCreate(BaseModel):
    """
    Input model for creating a new location.

    `uuid` is accepted only so that a client-supplied identifier can be
    rejected with a readable message instead of a schema error.
    """

    uuid: Optional[str] = None
    parent_uuid: Optional[str] = None
    names: Optional[Dict[str, str]] = None

    model_config = ConfigDict(extra="forbid")


class LocationUpdate(BaseModel):
    """
    Input model for renaming a location.
    """

    names: Optional[Dict[str, str]] = None

    model_config = ConfigDict(extra="forbid")


class LocationResponse(BaseModel):
    """
    What clients receive for a single location.
    """

    uuid: str
    parent_uuid: Optional[str] = None
    names: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class LocationList(BaseModel):
    """
    Response model for list and search endpoints.
    """

    results: List[LocationResponse]

    model_config = ConfigDict(extra="forbid")


def to_response(record: LocationRecord) -> LocationResponse:
    """Map a stored location to its external representation."""
    return LocationResponse(
        uuid=record.id,
        parent_uuid=record.parent_id,
        names={DEFAULT_LOCALE: record.name},
    )


def pick_name(names: Optional[Dict[str, str]]) -> Optional[str]:
    """
    Choose the display name from a locale -> name mapping.

    Only one name is stored per location: the default-locale entry wins,
    otherwise the first entry in mapping order.
    """
    if not names:
        return None
    if DEFAULT_LOCALE in names:
        return names[DEFAULT_LOCALE]
    return next(iter(names.values()))

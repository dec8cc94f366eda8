from typing import Any, Dict, Set
from pydantic import BaseModel, Field, ConfigDict


class PatientRecord(BaseModel):
    """
    The slice of a patient document the location registry reads.

    Attribute values are free-form; any string value may hold a location id.
    """

    id: str
    attributes: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    def location_values(self) -> Set[str]:
        return {value for value in self.attributes.values() if isinstance(value, str) and value}

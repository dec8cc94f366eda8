from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class ProfileList(BaseModel):
    """
    Profiles available on this server and the one currently applied.
    """

    profiles: List[str]
    current_profile: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ProfileResult(BaseModel):
    """
    Outcome of an upload or apply, including the command output.
    """

    filename: str
    output: str = ""

    model_config = ConfigDict(extra="forbid")

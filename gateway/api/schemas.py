from __future__ import annotations

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, constr

Environment = Literal["sandbox", "prod"]
VersionType = Literal["DRAFT", "MINOR", "MAJOR"]


class DraftRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    incident_id: UUID
    environment: Environment = "sandbox"


class DraftUpdateRequest(DraftRequest):
    version_type: VersionType = "DRAFT"


class GetUrlQuery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    e2_id: constr(strip_whitespace=True, min_length=1)
    environment: Environment = "sandbox"


__all__ = [
    "DraftRequest",
    "DraftUpdateRequest",
    "Environment",
    "GetUrlQuery",
    "VersionType",
]

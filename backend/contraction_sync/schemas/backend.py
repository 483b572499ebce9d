from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class AdapterKind(str, Enum):
    PASSIVE = "none"
    POLLING = "sheets"
    REALTIME = "realtime"


class BackendConfig(BaseModel):
    """Remote backend selection, as persisted locally or carried by a share link."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    kind: AdapterKind = AdapterKind.PASSIVE
    script_url: Optional[str] = Field(None, description="Spreadsheet proxy endpoint (polling backend)")
    sheet_name: str = "Contractions"
    user_id: Optional[str] = Field(None, description="Collection owner (realtime backend)")

    @model_validator(mode="after")
    def _check_required(self) -> "BackendConfig":
        if self.kind is AdapterKind.POLLING and not self.script_url:
            raise ValueError("script_url is required for the sheets backend")
        if self.kind is AdapterKind.REALTIME and not self.user_id:
            raise ValueError("user_id is required for the realtime backend")
        return self


class ShareLinkRequest(BaseModel):
    url: str = Field(..., description="Full URL or bare fragment ('#config=...' / '#userId=...')")


class ShareLinkResponse(BaseModel):
    url: str


class MigrationResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    migrated: int = 0
    verified: int = 0
    errors: List[str] = []

from typing import List, Literal, Optional
from pydantic import BaseModel, Field

class StatusNotificationIn(BaseModel):
    # OFF / STARTING / ON / anything else is treated as UNKNOWN
    status: Optional[str] = None
    proxyHost: Optional[str] = None
    proxyPort: Optional[int] = None

class SolutionIn(BaseModel):
    solution: str = ""

class AttemptSnapshot(BaseModel):
    state: str
    networkStatus: Optional[Literal["OFF", "STARTING", "ON", "UNKNOWN"]] = None
    proxy: Optional[str] = None
    hasChallenge: bool = False
    busy: bool = False
    error: Optional[str] = None
    bridges: Optional[List[str]] = None

class BridgePrefs(BaseModel):
    bridges: List[str] = Field(default_factory=list)
    enabled: bool = False

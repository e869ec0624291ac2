"""Wire models exchanged over the local endpoint"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LaunchRequest(BaseModel):
    """Arguments and environment of a redundant process start"""

    model_config = ConfigDict(frozen=True)

    arguments: List[str] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)


class ChannelCall(BaseModel):
    """Body of a channel command invocation"""

    arg: Any = None


class ChannelReply(BaseModel):
    """Acknowledgement of a channel command"""

    ok: bool = True
    result: Any = None


class AskpassRequest(BaseModel):
    """Credential prompt forwarded by a child process (e.g. git)"""

    id: str
    host: str
    command: str


class Credentials(BaseModel):
    """Answer to an askpass request; empty values mean cancelled"""

    username: str = ""
    password: str = ""


class ExitRequest(BaseModel):
    """Argument of the lifecycle channel's exit command"""

    code: int = 0


class HealthResponse(BaseModel):
    """Liveness probe answer"""

    status: str = "ok"
    pid: int
    version: Optional[str] = None

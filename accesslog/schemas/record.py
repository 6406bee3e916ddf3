"""
Access-log record schema.
Defines the closed set of loggable fields and the per-request record
that templates are rendered against.
"""

from enum import Enum
from typing import Union

from pydantic import BaseModel, Field


class LogField(str, Enum):
    """Placeholder names accepted in an access-log format string."""
    TIME_RFC3339 = "time_rfc3339"
    ID = "id"
    REMOTE_IP = "remote_ip"
    HOST = "host"
    URI = "uri"
    METHOD = "method"
    PATH = "path"
    REFERER = "referer"
    USER_AGENT = "user_agent"
    STATUS = "status"
    LATENCY = "latency"              # microseconds
    LATENCY_HUMAN = "latency_human"
    BYTES_IN = "bytes_in"
    BYTES_OUT = "bytes_out"


class AccessLogRecord(BaseModel):
    """Request/response metadata captured once the response is finalized."""
    model_config = {"frozen": True}

    time_rfc3339: str
    id: str = ""
    remote_ip: str = ""
    host: str = ""
    uri: str = ""
    method: str = ""
    path: str = "/"
    referer: str = ""
    user_agent: str = ""
    status: int = 0
    latency: int = Field(default=0, ge=0)
    latency_human: str = "0s"
    bytes_in: str = "0"
    bytes_out: int = Field(default=0, ge=0)

    def value_of(self, field: LogField) -> Union[str, int]:
        return getattr(self, field.value)

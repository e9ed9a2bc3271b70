import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from domain.identity import Identity


class TraceLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every record with the trace id and user of the request."""

    def process(self, msg, kwargs):
        prefix = f"[trace={self.extra['trace']} user={self.extra['user']}]"
        return f"{prefix} {msg}", kwargs


@dataclass
class RequestContext:
    """Per-request values passed explicitly down to the store."""
    identity: Identity
    trace_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    log: Optional[logging.LoggerAdapter] = None

    def __post_init__(self):
        if self.log is None:
            self.log = TraceLoggerAdapter(
                logging.getLogger("blobd.request"),
                {"trace": self.trace_id, "user": self.identity.username},
            )


@dataclass
class UploadResponse:
    path: str
    checksum: str
    size: Optional[int] = None

"""
Request tracking models

A RequestRecord exists from dispatch until its completion callback has
run; the Requests manager owns the table of live records.
"""

from enum import Enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional
import time


class RequestStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class RequestRecord:
    """
    State of one asynchronous request (chat call or block expansion)

    Attributes:
        id: Unique request id
        status: Current RequestStatus
        created_at: Epoch seconds at dispatch
        provider: Provider the request was sent to (None for block work)
        model: Model name, if any
        payload: What was handed to the executor
        result: Executor result once completed
        error: Error message once failed
        kind: "chat" or "block"
    """
    id: str
    status: RequestStatus = RequestStatus.PENDING
    created_at: float = field(default_factory=time.time)
    provider: Optional[str] = None
    model: Optional[str] = None
    payload: Any = None
    result: Any = None
    error: Optional[str] = None
    kind: str = "chat"

    def data_make(self) -> Dict[str, Any]:
        """Plain dict stored in the state store"""
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def data_load(cls, data: Dict[str, Any]) -> "RequestRecord":
        fields = dict(data)
        fields["status"] = RequestStatus(fields.get("status", "pending"))
        return cls(**fields)

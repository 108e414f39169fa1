"""
Error taxonomy shared by the remote client, the approval workflow and the hub API.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any


class ErrorKind(str, enum.Enum):
    network          = "network"            # transport failure, request never answered
    remote_rejected  = "remote_rejected"    # remote answered with a non-2xx status
    partial_mutation = "partial_mutation"   # multi-step mutation stopped half way
    config_invalid   = "config_invalid"     # descriptor or transition cannot be applied
    not_found        = "not_found"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.not_found:        404,
    ErrorKind.config_invalid:   409,
    ErrorKind.remote_rejected:  502,
    ErrorKind.partial_mutation: 502,
    ErrorKind.network:          503,
}


class DevHubError(Exception):
    """Raised by workflow operations; converted to an ErrorPayload at the API edge."""

    def __init__(self, kind: ErrorKind, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = detail

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_payload(self) -> "ErrorPayload":
        return ErrorPayload(code=self.kind.value, message=self.message, detail=dict(self.detail))


@dataclass(frozen=True)
class ErrorPayload:
    code: str
    message: str
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

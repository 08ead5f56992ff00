"""Typed per-request context populated once by the auth boundary."""

import time
import uuid
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    """Identity and deadline of one inbound call.

    ``tenant_id`` is resolved by the auth dependency and trusted by every
    layer below it. ``deadline`` is a ``time.monotonic()`` instant; None means
    only the per-call timeouts apply.
    """

    tenant_id: uuid.UUID
    subject: str = "anonymous"
    auth_method: str = "jwt"
    request_id: Optional[str] = None
    deadline: Optional[float] = field(default=None, compare=False)

    @property
    def tenant_key(self) -> str:
        """Tenant id in the string form stored in the database and cache keys."""
        return str(self.tenant_id)

    def time_left(self, cap: float) -> float:
        """Seconds available for the next I/O call, never more than ``cap``.

        Returns 0.0 once the deadline has passed.
        """
        if self.deadline is None:
            return cap
        return max(0.0, min(cap, self.deadline - time.monotonic()))

    @classmethod
    def with_timeout(cls, tenant_id: uuid.UUID, timeout: float, **kwargs) -> "RequestContext":
        return cls(tenant_id=tenant_id, deadline=time.monotonic() + timeout, **kwargs)

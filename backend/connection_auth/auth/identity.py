from dataclasses import dataclass
from typing import Optional, Union

from starlette.requests import Request


@dataclass(frozen=True)
class RequestContext:
    """Who is calling from where; passed explicitly into every service call"""
    ip_address: str = "unknown"
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class Authenticated:
    """
    A resolved caller.

    ``user_id`` is None for magic-code tokens issued to an email that has no
    account yet.
    """
    user_id: Optional[int]
    username: Optional[str]
    is_admin: bool = False
    email: Optional[str] = None
    via: str = "session"
    credential: Optional[str] = None

    @property
    def role(self) -> str:
        return "admin" if self.is_admin else "user"


@dataclass(frozen=True)
class Anonymous:
    reason: Optional[str] = None


Identity = Union[Authenticated, Anonymous]


def client_ip(request: Request, trust_forwarded_for: bool = True) -> str:
    """Resolve the caller's address, preferring the first X-Forwarded-For hop"""
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def request_context(request: Request, trust_forwarded_for: bool = True) -> RequestContext:
    return RequestContext(
        ip_address=client_ip(request, trust_forwarded_for),
        user_agent=request.headers.get("user-agent"),
    )

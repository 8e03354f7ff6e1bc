from .identity import Anonymous, Authenticated, Identity, RequestContext

__all__ = [
    "Anonymous",
    "Authenticated",
    "Identity",
    "RequestContext"
]

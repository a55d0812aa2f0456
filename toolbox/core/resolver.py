"""
Reference Resolver

Turns the public path of an output artifact into an absolute URL the
client can fetch. Behind a reverse proxy the forwarded headers win over
what the app itself sees.
"""

from typing import Optional

from fastapi import Request

from toolbox.modules.artifacts.models import RequestContext


def _first(header_value: Optional[str]) -> Optional[str]:
    # Proxy chains append: "https, http"
    if not header_value:
        return None
    value = header_value.split(",")[0].strip()
    return value or None


def context_from_request(request: Request) -> RequestContext:
    """Capture the parts of an inbound request needed to build URLs later."""
    return RequestContext(
        scheme=request.url.scheme,
        host=request.headers.get("host") or request.url.netloc,
        forwarded_proto=_first(request.headers.get("x-forwarded-proto")),
        forwarded_host=_first(request.headers.get("x-forwarded-host")),
    )


class ReferenceResolver:
    """Builds externally dereferenceable URLs for servable outputs."""

    def __init__(self, public_base_url: Optional[str] = None):
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def resolve(self, context: RequestContext, public_path: str) -> str:
        if not public_path.startswith("/"):
            public_path = "/" + public_path

        if self.public_base_url:
            return f"{self.public_base_url}{public_path}"

        scheme = (context.forwarded_proto or context.scheme or "http").lower()
        host = context.forwarded_host or context.host
        return f"{scheme}://{host}{public_path}"

from typing import Optional
from fastapi import Request

# Checked in order; the first non-empty value wins
FORWARDING_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")

def client_ip(request: Request) -> Optional[str]:
    """Best-effort client address: proxy headers first, then the socket peer."""
    for header in FORWARDING_HEADERS:
        value = request.headers.get(header)
        if value:
            # X-Forwarded-For is "client, proxy1, proxy2"
            first = value.split(",")[0].strip()
            if first:
                return first
    if request.client and request.client.host:
        return request.client.host
    return None

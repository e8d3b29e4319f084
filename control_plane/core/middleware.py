"""
ASGI middleware shared by every route.
"""

from typing import Iterable, List, Tuple

Header = Tuple[bytes, bytes]

DEFAULT_SECURITY_HEADERS: List[Header] = [
    (b"X-Content-Type-Options", b"nosniff"),
    (b"X-Frame-Options", b"DENY"),
    (b"X-XSS-Protection", b"1; mode=block"),
    (b"Referrer-Policy", b"no-referrer"),
]

# Permission answers depend on the caller and change with every grant
NO_STORE_PREFIXES = ("/api/",)


class SecurityHeadersMiddleware:
    def __init__(self, app, headers: Iterable[Header] = DEFAULT_SECURITY_HEADERS):
        self.app = app
        self.headers = list(headers)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        extra = list(self.headers)
        if scope.get("path", "").startswith(NO_STORE_PREFIXES):
            extra.append((b"Cache-Control", b"no-store"))

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].extend(extra)
            await send(message)

        await self.app(scope, receive, send_with_headers)

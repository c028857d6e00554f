"""Cookie reads and writes for a single request/response cycle."""
from dataclasses import dataclass
from typing import Mapping, Optional

from starlette.responses import Response

from calq.errors import CookieWriteError
from calq.metrics import COOKIE_WRITES_TOTAL


@dataclass
class PendingCookie:
    name: str
    value: str
    max_age: int
    domain: Optional[str] = None
    path: str = "/"


class ResponseCookies:
    """Cookies sent by the browser plus the ones to send back with the response.

    Writes are held until ``apply`` copies them onto the outgoing response.
    After that the headers are considered sent and any further write fails.
    """

    def __init__(self, incoming: Optional[Mapping[str, str]] = None):
        self._incoming = dict(incoming or {})
        self._pending: dict[str, PendingCookie] = {}
        self.committed = False

    def get(self, name: str) -> Optional[str]:
        # Reads see this request's own writes, like the browser will on the next one
        if name in self._pending:
            return self._pending[name].value
        return self._incoming.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._pending or name in self._incoming

    @property
    def pending(self) -> list[PendingCookie]:
        return list(self._pending.values())

    def set(
        self,
        name: str,
        value: str,
        max_age: int,
        domain: Optional[str] = None,
        path: str = "/",
    ) -> None:
        if self.committed:
            raise CookieWriteError(
                f"Unable to write cookie {name!r}: response headers have already been sent"
            )
        self._pending[name] = PendingCookie(name=name, value=value, max_age=max_age, domain=domain, path=path)
        COOKIE_WRITES_TOTAL.inc()

    def apply(self, response: Response) -> None:
        for cookie in self._pending.values():
            response.set_cookie(
                cookie.name,
                cookie.value,
                max_age=cookie.max_age,
                path=cookie.path,
                domain=cookie.domain,
            )
        self.committed = True

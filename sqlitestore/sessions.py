"""Session and cookie options handled by the store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from sqlitestore.store import SqliteStore


DEFAULT_MAX_AGE = 86400 * 30


class Options(BaseModel):
    """Cookie and expiry policy for a session."""

    model_config = ConfigDict(validate_assignment=True)

    path: str = "/"
    domain: Optional[str] = None
    # Seconds. 0 means a browser-session cookie, < 0 deletes the cookie.
    max_age: int = DEFAULT_MAX_AGE
    secure: bool = False
    http_only: bool = True
    same_site: Optional[Literal["lax", "strict", "none"]] = "lax"


class Session:
    """A named session: an id, an attribute bag and its cookie options.

    Attributes:
        name: The session (cookie) name the session was created under.
        id: The row id as a string, empty until the session is first saved.
        values: The attribute bag.
        options: Options copied from the store defaults.
        is_new: ``True`` until the session has been loaded from, or saved to, the store.
    """

    def __init__(self, store: Optional["SqliteStore"], name: str) -> None:
        self.store = store
        self.name = name
        self.id = ""
        self.values: Dict[str, Any] = {}
        self.options = Options()
        self.is_new = True

    def save(self, request: "Request", response: "Response") -> None:
        """Persist the session through its store and set the cookie"""
        if self.store is None:
            raise RuntimeError(f"Session {self.name!r} is not bound to a store")
        self.store.save(request, response, self)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Session(name={self.name!r}, id={self.id!r}, is_new={self.is_new})>"

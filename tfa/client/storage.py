"""Session-scoped persistence for redirect-mode login attempts."""

from typing import Protocol

from pydantic import BaseModel

STATE_KEY = "oauth_state"
CLIENT_PUBLIC_KEY_KEY = "oauth_client_public_key"
CLIENT_PRIVATE_KEY_KEY = "oauth_client_private_key"
SERVER_PUBLIC_KEY_KEY = "oauth_server_public_key"

STORAGE_KEYS = (
    STATE_KEY,
    CLIENT_PUBLIC_KEY_KEY,
    CLIENT_PRIVATE_KEY_KEY,
    SERVER_PUBLIC_KEY_KEY,
)


class SessionStorage(Protocol):
    """String key/value storage scoped to one browsing session."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemorySessionStorage:
    """Dict-backed session storage for tests and non-browser callers."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class OAuthSession(BaseModel):
    """Nonce, ephemeral key pair and server key snapshot for one attempt."""

    state: str
    client_public_key: str
    client_private_key: str
    server_public_key: str


def store_session(storage: SessionStorage, session: OAuthSession) -> None:
    storage.set_item(STATE_KEY, session.state)
    storage.set_item(CLIENT_PUBLIC_KEY_KEY, session.client_public_key)
    storage.set_item(CLIENT_PRIVATE_KEY_KEY, session.client_private_key)
    storage.set_item(SERVER_PUBLIC_KEY_KEY, session.server_public_key)


def read_session(storage: SessionStorage) -> OAuthSession | None:
    """Return the stored session, or None when any part is missing."""
    state = storage.get_item(STATE_KEY)
    client_public_key = storage.get_item(CLIENT_PUBLIC_KEY_KEY)
    client_private_key = storage.get_item(CLIENT_PRIVATE_KEY_KEY)
    server_public_key = storage.get_item(SERVER_PUBLIC_KEY_KEY)
    if not (state and client_public_key and client_private_key and server_public_key):
        return None
    return OAuthSession(
        state=state,
        client_public_key=client_public_key,
        client_private_key=client_private_key,
        server_public_key=server_public_key,
    )


def clear_session(storage: SessionStorage) -> None:
    for key in STORAGE_KEYS:
        storage.remove_item(key)

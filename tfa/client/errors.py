"""Attributable failures of the relying-party login flow."""

from enum import StrEnum


class FlowErrorKind(StrEnum):
    MISSING_PRIVATE_KEY = "missing_private_key"
    MISSING_STATE = "missing_state"
    STATE_MISMATCH = "state_mismatch"
    UNENCRYPTED_TOKEN = "unencrypted_token"
    KEY_IMPORT_FAILED = "key_import_failed"
    DECRYPT_FAILED = "decrypt_failed"
    MALFORMED_PAYLOAD = "malformed_payload"
    MISSING_TOKEN = "missing_token"
    REMOTE_REJECTED = "remote_rejected"
    PUBLIC_KEY_UNAVAILABLE = "public_key_unavailable"
    POPUP_BLOCKED = "popup_blocked"
    POPUP_CLOSED = "popup_closed"


class OAuthClientError(Exception):
    """Flow failure tagged with the step that produced it."""

    def __init__(self, kind: FlowErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

"""
Skyrapport Authentication Management

File Purpose: Resolve and hold the authenticated Bluesky session used by the API client
Primary Functions/Classes: Session, resolve_session, AuthManager
Inputs and Outputs (I/O): User credentials, stored session blobs, AT Protocol login

Authenticated calls need an access token and the account's PDS endpoint. A
session can come from an interactive login through the atproto SDK or from a
previously stored session blob.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from atproto import Client
from atproto import Session as AtprotoSession

from .exceptions import AuthenticationError

logger = logging.getLogger(__name__)

DEFAULT_PDS_URL = "https://bsky.social"


@dataclass
class Session:
    """Credentials for authenticated XRPC calls."""

    access_jwt: str
    did: str
    handle: str
    pds_url: str = DEFAULT_PDS_URL
    refresh_jwt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_pds_url(url: Optional[str]) -> str:
    """Strip trailing slashes and default the scheme to https."""
    pds_url = (url or DEFAULT_PDS_URL).rstrip("/")
    if not pds_url.startswith(("http://", "https://")):
        pds_url = f"https://{pds_url}"
    return pds_url


# Known stored-session shapes. Each entry maps a shape name to a function that
# returns the candidate account dict for that shape, or None if the shape does
# not match.


def _nested_accounts(blob: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    session = blob.get("session")
    if not isinstance(session, dict):
        return None
    return _select_current(session.get("currentAccount"), session.get("accounts"))


def _flat_accounts(blob: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return _select_current(blob.get("currentAccount"), blob.get("accounts"))


def _direct_account(blob: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if blob.get("accessJwt") and blob.get("did"):
        return blob
    return None


def _select_current(current: Any, accounts: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(current, dict) or not current.get("did"):
        return None
    candidates: List[Dict[str, Any]] = [a for a in accounts or [] if isinstance(a, dict)]
    for account in candidates:
        if account.get("did") == current["did"]:
            return account
    return None


SESSION_SHAPES = (
    ("nested", _nested_accounts),
    ("flat", _flat_accounts),
    ("direct", _direct_account),
)


def resolve_session(blob: Any) -> Optional[Session]:
    """Resolve a stored session blob into a :class:`Session`.

    Accepts a JSON string or an already-decoded dict. Shapes are tried in a
    fixed order; the first one yielding an account with both an access token
    and a DID wins.
    """
    if isinstance(blob, str):
        try:
            blob = json.loads(blob)
        except json.JSONDecodeError:
            return None
    if not isinstance(blob, dict):
        return None

    for shape, extract in SESSION_SHAPES:
        account = extract(blob)
        if account and account.get("accessJwt") and account.get("did"):
            logger.debug("Resolved %s session for %s", shape, account.get("handle") or account["did"])
            return Session(
                access_jwt=account["accessJwt"],
                did=account["did"],
                handle=account.get("handle") or "",
                pds_url=normalize_pds_url(account.get("pdsUrl") or account.get("service")),
                refresh_jwt=account.get("refreshJwt"),
            )
    return None


class AuthManager:
    """Manages authentication state and session persistence."""

    def __init__(self, session_file: Optional[Path] = None):
        self.client: Optional[Client] = None
        self.session: Optional[Session] = None
        self.session_file = Path(session_file) if session_file else None

    @property
    def current_did(self) -> Optional[str]:
        return self.session.did if self.session else None

    @property
    def current_handle(self) -> Optional[str]:
        return self.session.handle if self.session else None

    def is_authenticated(self) -> bool:
        """Check if a usable session is held."""
        return self.session is not None and bool(self.session.access_jwt)

    def logout(self) -> None:
        """Clear authentication state to force fresh login."""
        self.client = None
        self.session = None

    def normalize_handle(self, handle: str) -> str:
        """Normalize handle: drop leading @ and append .bsky.social if missing domain."""
        if not handle:
            return handle
        h = handle.strip().lstrip("@")
        if "." not in h:
            h = f"{h}.bsky.social"
        return h

    def login(self, handle: str, app_password: str) -> Session:
        """Log in through the atproto SDK and capture the resulting session."""
        handle = self.normalize_handle(handle)
        client = Client()
        try:
            client.login(handle, app_password)
        except Exception as e:
            self.logout()
            raise AuthenticationError(
                "Login failed",
                details=f"Could not authenticate @{handle}",
                original_error=e,
            ) from e

        self._capture(client, handle)
        logger.info("Logged in as @%s (%s)", self.session.handle, self.session.did)
        return self.session

    def refresh_session(self) -> Session:
        """Resume the held session through the SDK, which rotates expired tokens.

        Stored access tokens are short-lived; the refresh token keeps a saved
        session usable across runs.
        """
        current = self.require_session()
        if not current.refresh_jwt:
            raise AuthenticationError(
                "Session cannot be refreshed", details="No refresh token stored; log in again"
            )
        stored = AtprotoSession(
            handle=current.handle,
            did=current.did,
            access_jwt=current.access_jwt,
            refresh_jwt=current.refresh_jwt,
            pds_endpoint=current.pds_url,
        )
        client = Client()
        try:
            client.login(session_string=stored.encode())
        except Exception as e:
            raise AuthenticationError(
                "Session refresh failed",
                details=f"Stored session for @{current.handle} was rejected; log in again",
                original_error=e,
            ) from e

        self._capture(client, current.handle)
        logger.debug("Resumed session for @%s", self.session.handle)
        return self.session

    def _capture(self, client: Client, fallback_handle: str) -> None:
        exported = AtprotoSession.decode(client.export_session_string())
        self.client = client
        self.session = Session(
            access_jwt=exported.access_jwt,
            did=exported.did,
            handle=exported.handle or fallback_handle,
            pds_url=normalize_pds_url(exported.pds_endpoint),
            refresh_jwt=exported.refresh_jwt,
        )

    def require_session(self) -> Session:
        """Return the held session or raise :class:`AuthenticationError`."""
        if not self.is_authenticated():
            raise AuthenticationError("Not logged in to Bluesky")
        return self.session

    def save_session(self) -> None:
        """Persist the current session as a direct-account blob."""
        if not self.session_file or not self.session:
            return
        self.session_file.parent.mkdir(parents=True, exist_ok=True)
        blob = {
            "accessJwt": self.session.access_jwt,
            "refreshJwt": self.session.refresh_jwt,
            "did": self.session.did,
            "handle": self.session.handle,
            "pdsUrl": self.session.pds_url,
        }
        self.session_file.write_text(json.dumps(blob, indent=2))

    def load_session(self) -> bool:
        """Load a stored session blob. Returns True when a session was resolved."""
        if not self.session_file or not self.session_file.exists():
            return False
        try:
            raw = self.session_file.read_text()
        except OSError as e:
            logger.warning("Could not read session file %s: %s", self.session_file, e)
            return False
        session = resolve_session(raw)
        if session is None:
            logger.warning("No usable session in %s", self.session_file)
            return False
        self.session = session
        return True

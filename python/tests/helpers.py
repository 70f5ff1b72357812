"""Test helpers for authentication and common test operations.

Provides:
- User and family creation
- Session token minting and header/cookie generation
- WebSocket frame reading helpers
"""

import json

from hearth.auth.middleware import Viewer
from hearth.auth.session import mint_session_token
from hearth.db.records import User
from hearth.db.store import Store
from hearth.services.users import create_user


def create_family(store: Store, names: list[str], family_id: int) -> list[User]:
    """Create one user per name in the given family."""
    with store.write_tx() as tx:
        users = [
            create_user(tx, name, f"{name.lower()}@example.com", family_id) for name in names
        ]
        tx.commit()
    return users


def viewer_for(user: User) -> Viewer:
    return Viewer(user_id=user.id, family_id=user.family_id, name=user.name)


def auth_headers(user_id: int) -> dict[str, str]:
    """Bearer headers for a user."""
    return {"Authorization": f"Bearer {mint_session_token(user_id)}"}


def session_cookie_header(user_id: int, cookie_name: str = "authToken") -> dict[str, str]:
    """Cookie header carrying a session, as a browser sends on a WebSocket upgrade."""
    return {"cookie": f"{cookie_name}={mint_session_token(user_id)}"}


def frames(outbox) -> list[dict]:
    """Decode every frame buffered in an Outbox."""
    return [json.loads(f) for f in outbox.pending()]


def frame_types(outbox) -> list[str]:
    return [f["type"] for f in frames(outbox)]


def receive_until(websocket, frame_type: str, max_frames: int = 10) -> dict:
    """Read frames from a test WebSocket until one of the given type arrives."""
    for _ in range(max_frames):
        frame = websocket.receive_json()
        if frame["type"] == frame_type:
            return frame
    raise AssertionError(f"no {frame_type} frame within {max_frames} frames")

"""JSON frames exchanged over the terminal channel.

Client -> Server:
  {"type": "connect", "token": "...", "containerId": 17}
  {"type": "input", "data": "ls -la\n"}
  {"type": "resize", "cols": 120, "rows": 40}
  {"type": "close"}

Server -> Client:
  {"type": "welcome"}                     (on accept)
  {"type": "ready"}                       (shell attached)
  {"type": "data", "data": "..."}         (shell output, per stream in order)
  {"type": "error", "message": "..."}
  {"type": "info", "message": "..."}
  {"type": "closing", "code": 0}          (code present when the shell exited)
"""

import json
from typing import Any

CLIENT_FRAME_TYPES = frozenset({"connect", "input", "resize", "close"})

# Application close codes sent with the WebSocket close frame.
CLOSE_UNAUTHORIZED = 4001
CLOSE_FORBIDDEN = 4003
CLOSE_NORMAL = 1000


class FrameError(ValueError):
    """A client frame could not be parsed."""


def parse_frame(raw: str | bytes) -> dict[str, Any]:
    """Decode a client frame and check it carries a string ``type``."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FrameError("Frame is not valid UTF-8") from exc
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FrameError(f"Invalid JSON: {exc.msg}") from exc
    if not isinstance(frame, dict):
        raise FrameError("Frame must be a JSON object")
    frame_type = frame.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise FrameError("Frame has no type")
    return frame


def make_frame(frame_type: str, **fields: Any) -> str:
    """Encode a server frame, dropping fields that are None."""
    payload = {"type": frame_type}
    payload.update({key: value for key, value in fields.items() if value is not None})
    return json.dumps(payload)

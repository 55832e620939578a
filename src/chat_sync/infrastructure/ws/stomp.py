"""Minimal STOMP 1.2 text framing.

Frame layout: ``COMMAND\\nkey:value\\n...\\n\\nbody\\0``. A bare EOL between
frames is a heart-beat.
"""
from __future__ import annotations

from dataclasses import dataclass, field

NULL = "\x00"

# CONNECT/CONNECTED headers are never escaped (STOMP 1.2 §Value Encoding).
_UNESCAPED_COMMANDS = frozenset({"CONNECT", "CONNECTED"})

_ESCAPES = (("\\", "\\\\"), ("\r", "\\r"), ("\n", "\\n"), (":", "\\c"))
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n", "c": ":"}


class FrameDecodeError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class Frame:
    command: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


def _escape(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    out: list[str] = []
    it = iter(value)
    for ch in it:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(it, None)
        if nxt is None or nxt not in _UNESCAPES:
            raise FrameDecodeError(f"Invalid escape sequence in header: {value!r}")
        out.append(_UNESCAPES[nxt])
    return "".join(out)


def encode_frame(frame: Frame) -> str:
    escape = frame.command not in _UNESCAPED_COMMANDS
    lines = [frame.command]
    headers = dict(frame.headers)
    if frame.body and "content-length" not in headers:
        headers["content-length"] = str(len(frame.body.encode()))
    for key, value in headers.items():
        if escape:
            key, value = _escape(key), _escape(value)
        lines.append(f"{key}:{value}")
    return "\n".join(lines) + "\n\n" + frame.body + NULL


def _decode_one(chunk: str) -> Frame:
    head, sep, body = chunk.partition("\n\n")
    if not sep:
        raise FrameDecodeError("Frame has no header terminator")
    lines = head.replace("\r\n", "\n").split("\n")
    command = lines[0].strip()
    if not command:
        raise FrameDecodeError("Frame has no command")
    escape = command not in _UNESCAPED_COMMANDS
    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        key, colon, value = line.partition(":")
        if not colon:
            raise FrameDecodeError(f"Malformed header line: {line!r}")
        if escape:
            key, value = _unescape(key), _unescape(value)
        # Repeated headers: the first occurrence wins.
        headers.setdefault(key, value)
    return Frame(command=command, headers=headers, body=body)


def decode_frames(data: str) -> list[Frame]:
    """Split a text payload into frames, skipping heart-beats."""
    frames: list[Frame] = []
    for chunk in data.split(NULL):
        chunk = chunk.lstrip("\r\n")
        if not chunk:
            continue
        frames.append(_decode_one(chunk.replace("\r\n\r\n", "\n\n", 1)))
    return frames

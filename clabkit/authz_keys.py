"""Collect the user's public SSH keys into an authorized_keys file."""

from __future__ import annotations

import base64
import logging
import os
import socket
import struct
from pathlib import Path

log = logging.getLogger(__name__)

_REQUEST_IDENTITIES = 11
_IDENTITIES_ANSWER = 12


def add_key(content: str, key: str) -> str:
    """Return content with key appended, unless the key is malformed or present."""
    fields = key.split()
    # the key may carry a comment as third field, so compare the key body only
    if len(fields) < 2 or fields[1] in content:
        return content
    return content + key + "\n"


def _recv_exact(conn: socket.socket, size: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < size:
        chunk = conn.recv(size - len(chunks))
        if not chunk:
            raise ConnectionError("agent closed the connection")
        chunks.extend(chunk)
    return bytes(chunks)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def uint32(self) -> int:
        if self._pos + 4 > len(self._data):
            raise ValueError("truncated agent message")
        (value,) = struct.unpack_from(">I", self._data, self._pos)
        self._pos += 4
        return value

    def string(self) -> bytes:
        size = self.uint32()
        if self._pos + size > len(self._data):
            raise ValueError("truncated agent message")
        value = self._data[self._pos : self._pos + size]
        self._pos += size
        return value


def _format_key(blob: bytes, comment: str) -> str:
    key_type = _Reader(blob).string().decode("ascii")
    text = f"{key_type} {base64.b64encode(blob).decode('ascii')}"
    return f"{text} {comment}" if comment else text


def _parse_identities(reply: bytes) -> list[str]:
    if not reply or reply[0] != _IDENTITIES_ANSWER:
        raise ValueError("unexpected agent response")
    reader = _Reader(reply[1:])
    keys = []
    for _ in range(reader.uint32()):
        blob = reader.string()
        comment = reader.string().decode("utf-8", errors="replace")
        keys.append(_format_key(blob, comment))
    return keys


def ssh_agent_keys() -> list[str]:
    """Return the public keys registered with the ssh-agent."""
    sock_path = os.environ.get("SSH_AUTH_SOCK", "")
    if not sock_path:
        raise RuntimeError("SSH_AUTH_SOCK not set, skipping pubkey fetching")

    conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        conn.connect(sock_path)
    except OSError as exc:
        conn.close()
        raise ConnectionError(f"failed to open SSH_AUTH_SOCK: {exc}") from exc

    with conn:
        try:
            conn.sendall(struct.pack(">IB", 1, _REQUEST_IDENTITIES))
            (size,) = struct.unpack(">I", _recv_exact(conn, 4))
            reply = _recv_exact(conn, size)
            return _parse_identities(reply)
        except (OSError, ValueError, UnicodeDecodeError) as exc:
            raise RuntimeError(f"error listing agent's pub keys {exc}") from exc


def create_authz_keys_file(dest_path: str | os.PathLike, home: str | os.PathLike | None = None) -> str:
    """Write agent keys, ~/.ssh/*.pub and ~/.ssh/authorized_keys to dest_path.

    Returns the written content.
    """
    ssh_dir = Path(home if home is not None else Path.home()) / ".ssh"
    files = sorted(ssh_dir.glob("*.pub"))

    authorized = ssh_dir / "authorized_keys"
    if authorized.is_file():
        log.debug("%s found, adding the public keys it contains", authorized)
        files.append(authorized)

    content = ""
    try:
        agent_keys = ssh_agent_keys()
    except (RuntimeError, OSError) as exc:
        log.debug("%s", exc)
        agent_keys = []

    log.debug("extracted %d keys from ssh-agent", len(agent_keys))
    for key in agent_keys:
        content = add_key(content, key)

    for path in files:
        try:
            text = path.read_text()
        except OSError as exc:
            raise OSError(f"failed reading the file {path}: {exc}") from exc
        content = add_key(content, text)

    dest = Path(dest_path)
    dest.write_text(content)
    # the file must be readable by anyone
    dest.chmod(0o644)
    return content
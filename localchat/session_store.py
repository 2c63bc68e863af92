"""Session I/O. One pretty-printed JSON file per conversation."""

import json
import logging
import os
import tempfile
from pathlib import Path

from localchat.errors import NotPersisted, StorageError
from localchat.models import ChatSession


class SessionStore:
    """
    Durable mapping between a session id and its record on disk.

    Loading is best effort: a record that cannot be read or decoded is skipped
    so the rest of the history stays available. Skipped file names are kept in
    `skipped` for the caller to report.
    """

    def __init__(self, sessions_dir: str | os.PathLike):
        self.sessions_dir = Path(sessions_dir)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.skipped: list[str] = []

    def _json_helper(self, session_id: str) -> Path:
        """Record path for a session id"""
        return self.sessions_dir / f"chat_{session_id}.json"

    def find_sessions(self) -> list[Path]:
        """Lists all session records that exist within the sessions directory"""
        return sorted(
            p for p in self.sessions_dir.iterdir() if p.is_file() and p.suffix == ".json"
        )

    def load_all(self) -> dict[str, ChatSession]:
        """Load every session record, skipping the ones that fail to decode"""
        sessions: dict[str, ChatSession] = {}
        self.skipped = []
        for path in self.find_sessions():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                session = ChatSession.from_dict(data, location=path)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logging.warning(f"Skipping unreadable session file {path.name}: {e}")
                self.skipped.append(path.name)
                continue
            if session.id in sessions:
                logging.warning(
                    f"Skipping {path.name}: duplicate session id {session.id}"
                )
                self.skipped.append(path.name)
                continue
            sessions[session.id] = session
        return sessions

    def save(self, session: ChatSession):
        """Save the session to disk, binding a location on first save"""
        target = session.location or self._json_helper(session.id)
        payload = json.dumps(session.to_dict(), indent=2, ensure_ascii=False)
        tmp_path = None
        try:
            # Write beside the target so the rename stays on one filesystem
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.sessions_dir,
                prefix=".tmp_",
                suffix=".part",
                delete=False,
            ) as f:
                tmp_path = f.name
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f"Could not save {target.name}: {e}") from e
        session.location = target

    def delete(self, session: ChatSession):
        """Removes a session file. The session must have been saved before."""
        if session.location is None:
            raise NotPersisted(session.id)
        try:
            os.remove(session.location)
        except FileNotFoundError:
            # Already gone, nothing left to delete
            pass
        except OSError as e:
            raise StorageError(f"Could not delete {session.location.name}: {e}") from e
        session.location = None

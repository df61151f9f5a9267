"""Session store: one JSON file per session, holding its question/answer-set turns."""

import json
from datetime import datetime
from pathlib import Path
from typing import List, Dict, Any, Optional
from .config import DATA_DIR

DEFAULT_TITLE = "New Session"


def _sessions_dir() -> Path:
    directory = Path(DATA_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def _session_file(session_id: str) -> Path:
    return _sessions_dir() / f"{session_id}.json"


def _now() -> str:
    return datetime.utcnow().isoformat()


def _write(session: Dict[str, Any]):
    _session_file(session["id"]).write_text(json.dumps(session, indent=2, ensure_ascii=False), encoding="utf-8")


def _load_existing(session_id: str) -> Dict[str, Any]:
    session = get_session(session_id)
    if session is None:
        raise ValueError(f"Session {session_id} not found")
    return session


def create_session(session_id: str) -> Dict[str, Any]:
    session = {"id": session_id, "created_at": _now(), "title": DEFAULT_TITLE, "turns": []}
    _write(session)
    return session


def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    """The stored session, or None when no file exists for it."""
    path = _session_file(session_id)
    if not path.is_file():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def list_sessions() -> List[Dict[str, Any]]:
    """
    Session summaries for the sidebar, newest first.

    Returns:
        List of {"id", "created_at", "title", "turn_count"} dicts
    """
    summaries = []
    for path in _sessions_dir().glob("*.json"):
        session = json.loads(path.read_text(encoding="utf-8"))
        summaries.append({
            "id": session["id"],
            "created_at": session["created_at"],
            "title": session.get("title") or DEFAULT_TITLE,
            "turn_count": len(session.get("turns", [])),
        })
    return sorted(summaries, key=lambda summary: summary["created_at"], reverse=True)


def add_turn(
    session_id: str,
    user_text: str,
    user_images: List[str],
    model_answers: Dict[str, str],
):
    """
    Append a completed question/answer-set turn to a session.

    Turns are never edited after this point.
    """
    session = _load_existing(session_id)
    session["turns"].append({
        "userText": user_text,
        "userImages": list(user_images),
        "modelAnswers": dict(model_answers),
        "created_at": _now(),
    })
    _write(session)


def get_history(session_id: str) -> List[Dict[str, Any]]:
    """Stored turns in wire format, oldest first; empty for an unknown session."""
    session = get_session(session_id)
    return session.get("turns", []) if session else []


def update_session_title(session_id: str, title: str):
    session = _load_existing(session_id)
    session["title"] = title
    _write(session)


def delete_session(session_id: str):
    path = _session_file(session_id)
    if not path.is_file():
        raise ValueError(f"Session {session_id} not found")
    path.unlink()

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from file_sandbox.path_safety import Denied
from file_sandbox.sandbox import Sandbox

TRUNCATION_MARKER = "... [truncated]"


def _denied(outcome: Denied, logger) -> Dict[str, Any]:
    logger.info("Denied %s: %s", outcome.reason.value, outcome.path)
    return {"ok": False, "error": outcome.message, "reason": outcome.reason.value}


def _open_checked(raw: str, sandbox: Sandbox, logger) -> Tuple[Optional[Path], Optional[Dict[str, Any]]]:
    not_ready = sandbox.not_ready_reason()
    if not_ready:
        return None, {"ok": False, "error": not_ready}

    outcome = sandbox.validate(raw)
    if isinstance(outcome, Denied):
        return None, _denied(outcome, logger)

    if not Path(outcome.path).is_file():
        return None, {"ok": False, "error": f"file not found: {raw}"}

    # check again right before reading: roots may have been replaced or the
    # entry swapped for a symlink since the first check
    outcome = sandbox.validate(raw)
    if isinstance(outcome, Denied):
        return None, _denied(outcome, logger)

    return Path(outcome.path), None


def read_text_file_impl(*, path: str, max_chars: int, sandbox: Sandbox, logger) -> Dict[str, Any]:
    raw = (path or "").strip()
    if raw == "":
        return {"ok": False, "error": "path is empty"}

    file_path, err = _open_checked(raw, sandbox, logger)
    if err is not None:
        return err

    try:
        data = file_path.read_bytes()
    except OSError as e:
        return {"ok": False, "error": f"failed reading file: {e}"}

    text = data.decode("utf-8", errors="replace")
    total = len(text)

    try:
        limit = int(max_chars)
    except (TypeError, ValueError):
        limit = 0
    if limit <= 0:
        limit = sandbox.settings.max_read_chars

    truncated = bool(limit) and total > limit
    if truncated:
        text = text[:limit] + TRUNCATION_MARKER

    return {
        "ok": True,
        "path": str(file_path),
        "text": text,
        "char_count": total,
        "truncated": truncated,
    }


def read_file_window_impl(*, path: str, line: int, radius: int, sandbox: Sandbox, logger) -> Dict[str, Any]:
    raw = (path or "").strip()
    if raw == "":
        return {"ok": False, "error": "path is empty"}

    file_path, err = _open_checked(raw, sandbox, logger)
    if err is not None:
        return err

    try:
        r = int(radius)
    except (TypeError, ValueError):
        r = 25
    r = max(5, min(r, 120))

    try:
        content = file_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        return {"ok": False, "error": f"failed reading file: {e}"}

    lines = content.splitlines()
    if not lines:
        return {"ok": False, "error": "file is empty"}

    try:
        focus = int(line)
    except (TypeError, ValueError):
        focus = 1

    focus = max(1, min(focus, len(lines)))
    start = max(1, focus - r)
    end = min(len(lines), focus + r)

    window = [{"line": i, "text": lines[i - 1]} for i in range(start, end + 1)]

    return {
        "ok": True,
        "path": str(file_path),
        "focus_line": focus,
        "start_line": start,
        "end_line": end,
        "content": window,
    }


def list_allowed_directories_impl(*, sandbox: Sandbox) -> Dict[str, Any]:
    dirs = list(sandbox.list_allowed())
    return {
        "ok": True,
        "directories": dirs,
        "text": "\n".join(dirs) if dirs else "No allowed directories configured",
    }

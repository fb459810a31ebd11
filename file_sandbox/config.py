import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from file_sandbox.path_safety import real_path
from file_sandbox.path_utils import PathConvention, detect_convention, expand_home, normalize_path

RELATIVE_MODES = ("cwd", "roots")


class StartupError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    allowed_dirs: Tuple[str, ...] = ()
    relative_paths: str = "cwd"
    max_read_chars: int = 0
    log_level: str = "INFO"
    convention: PathConvention = field(default_factory=detect_convention)

    @property
    def relative_to_roots(self) -> bool:
        return self.relative_paths == "roots"


def _split_allowed_roots(raw: str) -> List[str]:
    """
    Windows typical separator is ';'. Unix is ':' (os.pathsep).
    We accept both.
    """
    s = (raw or "").strip()
    if not s:
        return []
    parts: List[str] = []
    for chunk in s.split(";"):
        parts.extend(chunk.split(os.pathsep))
    return [p.strip().strip('"') for p in parts if p.strip()]


def _int_env(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        raise StartupError(f"{name} must be an integer, got {raw!r}")


def load_settings(argv: Sequence[str], environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ

    dirs = [a for a in argv if a.strip()]
    dirs.extend(_split_allowed_roots(env.get("MCP_ALLOWED_ROOTS", "")))

    relative_paths = (env.get("MCP_RELATIVE_PATHS") or "cwd").strip().lower()
    if relative_paths not in RELATIVE_MODES:
        raise StartupError(f"MCP_RELATIVE_PATHS must be one of {', '.join(RELATIVE_MODES)}, got {relative_paths!r}")

    log_level = (env.get("MCP_LOG_LEVEL") or "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise StartupError(f"MCP_LOG_LEVEL is not a logging level: {log_level!r}")

    return Settings(
        allowed_dirs=tuple(dirs),
        relative_paths=relative_paths,
        max_read_chars=_int_env(env, "MCP_MAX_READ_CHARS", 0),
        log_level=log_level,
        convention=detect_convention(environ=env),
    )


def resolve_startup_directories(
    dirs: Sequence[str],
    convention: PathConvention,
    *,
    cwd: Optional[str] = None,
    realpath: Callable[[str], str] = real_path,
) -> List[str]:
    base = cwd if cwd is not None else os.getcwd()
    flavour = convention.flavour

    resolved: List[str] = []
    for d in dirs:
        absolute = normalize_path(expand_home(d), convention)
        if not flavour.isabs(absolute):
            absolute = normalize_path(flavour.join(base, absolute), convention)
        try:
            resolved.append(normalize_path(realpath(absolute), convention))
        except (OSError, ValueError):
            # not created yet: admit the normalized spelling, existence is checked next
            resolved.append(absolute)
    return resolved


def verify_startup_directories(dirs: Sequence[str], logger: Optional[logging.Logger] = None) -> None:
    for d in dirs:
        p = Path(d)
        try:
            is_dir = p.is_dir()
            exists = is_dir or p.exists()
        except (OSError, ValueError) as e:
            raise StartupError(f"Error accessing directory {d}: {e}")
        if not exists:
            raise StartupError(f"Error accessing directory {d}: no such directory")
        if not is_dir:
            raise StartupError(f"Error: {d} is not a directory")
        if logger is not None:
            logger.info("Allowed directory: %s", d)

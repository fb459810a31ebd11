import logging
import os
import stat as stat_mod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from file_sandbox.path_utils import POSIX, PathConvention, expand_home, normalize_path

_log = logging.getLogger(__name__)


class DenialReason(str, Enum):
    OUTSIDE_ALLOWED = "outside_allowed"
    SYMLINK_ESCAPE = "symlink_escape"
    PARENT_OUTSIDE_ALLOWED = "parent_outside_allowed"
    PARENT_MISSING = "parent_missing"
    NO_ROOT_MATCH = "no_root_match"
    UNREADABLE = "unreadable"


_MESSAGES = {
    DenialReason.OUTSIDE_ALLOWED: "Access denied - path outside allowed directories",
    DenialReason.SYMLINK_ESCAPE: "Access denied - symlink target outside allowed directories",
    DenialReason.PARENT_OUTSIDE_ALLOWED: "Access denied - parent directory outside allowed directories",
    DenialReason.PARENT_MISSING: "Parent directory does not exist",
    DenialReason.NO_ROOT_MATCH: "Access denied - relative path is not inside any allowed directory",
    DenialReason.UNREADABLE: "Cannot resolve path",
}


@dataclass(frozen=True)
class Approved:
    path: str
    link_count: int = 1

    ok = True


@dataclass(frozen=True)
class Denied:
    reason: DenialReason
    path: str
    detail: str = ""

    ok = False

    @property
    def message(self) -> str:
        text = f"{_MESSAGES[self.reason]}: {self.path}"
        if self.detail:
            text += f" ({self.detail})"
        return text


ValidationOutcome = Union[Approved, Denied]


def real_path(path: str) -> str:
    # os.path.realpath reports symlink loops as OSError(ELOOP); Path.resolve
    # raises RuntimeError for them before Python 3.13
    return os.path.realpath(path, strict=True)


def _is_relative_to(path: str, root: str, convention: PathConvention) -> bool:
    flavour = convention.flavour
    p = flavour.normpath(path)
    r = flavour.normpath(root)
    if not (flavour.isabs(p) and flavour.isabs(r)):
        return False

    p = convention.comparison_key(p)
    r = convention.comparison_key(r)
    if p == r:
        return True

    # the remainder after the root must be a plain descent: no drive, no root, no ".."
    prefix = r if r.endswith(flavour.sep) else r + flavour.sep
    return p.startswith(prefix)


def is_path_within_allowed_directories(
    path: str,
    allowed_dirs: Iterable[str],
    convention: PathConvention = POSIX,
) -> bool:
    return any(_is_relative_to(path, root, convention) for root in allowed_dirs)


def _resolve_under_roots(relative: str, allowed: Sequence[str], convention: PathConvention) -> Optional[str]:
    for root in allowed:
        candidate = normalize_path(convention.flavour.join(root, relative), convention)
        if _is_relative_to(candidate, root, convention):
            return candidate
    return None


def _check_link_count(real: str, stat: Callable[[str], Any], logger: logging.Logger) -> ValidationOutcome:
    try:
        st = stat(real)
    except (OSError, ValueError) as e:
        return Denied(DenialReason.UNREADABLE, real, str(e))

    # a second name for the same inode may live outside every allowed directory;
    # realpath cannot see that, so this is reported but not refused
    if stat_mod.S_ISREG(st.st_mode) and st.st_nlink > 1:
        logger.warning("%s has %d hard links; content may also be reachable from outside", real, st.st_nlink)
    return Approved(real, link_count=st.st_nlink)


def validate_path(
    requested: str,
    allowed_dirs: Iterable[str],
    *,
    convention: PathConvention = POSIX,
    cwd: Optional[str] = None,
    relative_to_roots: bool = False,
    realpath: Callable[[str], str] = real_path,
    stat: Callable[[str], Any] = os.stat,
    logger: Optional[logging.Logger] = None,
) -> ValidationOutcome:
    """
    Decide whether `requested` may be accessed under `allowed_dirs`.

    Rules:
    - Relative paths resolve against `cwd`, or with `relative_to_roots`
      against the first allowed directory that lexically contains them.
    - The lexical containment check runs before any filesystem access.
    - Existing targets are symlink-resolved and re-checked; the resolved
      path is what gets approved.
    - Missing targets are approved in normalized form when their parent
      resolves inside an allowed directory.
    """
    log = logger or _log
    flavour = convention.flavour
    allowed = tuple(allowed_dirs)

    normalized = normalize_path(expand_home(requested or ""), convention)

    if flavour.isabs(normalized):
        absolute = normalized
    elif relative_to_roots:
        candidate = _resolve_under_roots(normalized, allowed, convention)
        if candidate is None:
            return Denied(DenialReason.NO_ROOT_MATCH, normalized)
        absolute = candidate
    else:
        base = cwd if cwd is not None else os.getcwd()
        absolute = normalize_path(flavour.join(base, normalized), convention)

    if not is_path_within_allowed_directories(absolute, allowed, convention):
        return Denied(DenialReason.OUTSIDE_ALLOWED, absolute, "not in " + (", ".join(allowed) or "<none>"))

    try:
        real = normalize_path(realpath(absolute), convention)
    except FileNotFoundError:
        return _validate_missing_target(absolute, allowed, convention, realpath)
    except (OSError, ValueError) as e:
        return Denied(DenialReason.UNREADABLE, absolute, str(e))

    if not is_path_within_allowed_directories(real, allowed, convention):
        log.warning("Symlink escape refused: %s -> %s", absolute, real)
        return Denied(DenialReason.SYMLINK_ESCAPE, real)

    return _check_link_count(real, stat, log)


def _validate_missing_target(
    absolute: str,
    allowed: Sequence[str],
    convention: PathConvention,
    realpath: Callable[[str], str],
) -> ValidationOutcome:
    parent = convention.flavour.dirname(absolute)
    try:
        real_parent = normalize_path(realpath(parent), convention)
    except FileNotFoundError:
        return Denied(DenialReason.PARENT_MISSING, parent)
    except (OSError, ValueError) as e:
        return Denied(DenialReason.UNREADABLE, parent, str(e))

    if not is_path_within_allowed_directories(real_parent, allowed, convention):
        return Denied(DenialReason.PARENT_OUTSIDE_ALLOWED, real_parent)

    # nothing to resolve yet, so the syntactic form is the canonical one
    return Approved(absolute)

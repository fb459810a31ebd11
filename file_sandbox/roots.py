import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional
from urllib.parse import unquote

from file_sandbox.path_safety import real_path
from file_sandbox.path_utils import POSIX, PathConvention, expand_home, normalize_path

_log = logging.getLogger(__name__)

FILE_SCHEME = "file://"
_URI_DRIVE = re.compile(r"^/[A-Za-z]:")


@dataclass(frozen=True)
class RootProposal:
    uri: str
    name: Optional[str] = None


def _as_proposal(root: Any) -> RootProposal:
    if isinstance(root, RootProposal):
        return root
    if isinstance(root, dict):
        return RootProposal(uri=str(root.get("uri") or ""), name=root.get("name"))
    # mcp.types.Root: uri is a pydantic FileUrl
    return RootProposal(uri=str(getattr(root, "uri", "") or ""), name=getattr(root, "name", None))


def root_uri_to_path(uri: str, convention: PathConvention = POSIX) -> str:
    raw = uri
    if raw.startswith(FILE_SCHEME):
        raw = unquote(raw[len(FILE_SCHEME):])
        # file:///C:/work -> C:/work
        if convention.drive_letters and _URI_DRIVE.match(raw):
            raw = raw[1:]
    return raw


def _is_dir(path: str) -> bool:
    return Path(path).is_dir()


def get_valid_root_directories(
    roots: Iterable[Any],
    *,
    convention: PathConvention = POSIX,
    cwd: Optional[str] = None,
    realpath: Callable[[str], str] = real_path,
    is_dir: Callable[[str], bool] = _is_dir,
    logger: Optional[logging.Logger] = None,
) -> List[str]:
    """
    Turn client-announced roots into canonical directory paths.

    Entries that do not exist, are not directories, or cannot be resolved
    are logged and skipped; the rest are returned in order, deduplicated.
    """
    log = logger or _log
    flavour = convention.flavour
    base = cwd if cwd is not None else os.getcwd()

    valid: List[str] = []
    seen = set()

    for root in roots:
        proposal = _as_proposal(root)
        try:
            raw = expand_home(root_uri_to_path(proposal.uri, convention))
            if not raw:
                raise ValueError("empty root uri")
            raw = normalize_path(raw, convention)
            if not flavour.isabs(raw):
                raw = flavour.join(base, raw)

            resolved = normalize_path(realpath(raw), convention)
            if not is_dir(resolved):
                raise NotADirectoryError(f"not a directory: {resolved}")
        except (OSError, ValueError) as e:
            log.warning("Skipping invalid root %s: %s", proposal.uri, e)
            continue

        key = convention.comparison_key(resolved)
        if key in seen:
            continue
        seen.add(key)
        valid.append(resolved)

    return valid


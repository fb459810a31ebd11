import ntpath
import os
import posixpath
import re
import sys
from dataclasses import dataclass
from typing import Mapping, Optional


_MNT_DRIVE = re.compile(r"^/mnt/([A-Za-z])(/.*)?$")
_SHORT_DRIVE = re.compile(r"^/([A-Za-z])/(.*)$")
_FORWARD_DRIVE = re.compile(r"^[A-Za-z]:/")


@dataclass(frozen=True)
class PathConvention:
    """
    How paths are spelled and compared on the filesystem being served.

    drive_letters: paths are rooted at `C:\\` style drives (ntpath rules).
    case_fold: two spellings that differ only in case name the same entry.
    """

    drive_letters: bool = False
    case_fold: bool = False

    @property
    def flavour(self):
        return ntpath if self.drive_letters else posixpath

    def comparison_key(self, path: str) -> str:
        return path.lower() if self.case_fold else path


POSIX = PathConvention(drive_letters=False, case_fold=False)
MACOS = PathConvention(drive_letters=False, case_fold=True)
WINDOWS = PathConvention(drive_letters=True, case_fold=True)


def _env_flag(environ: Mapping[str, str], name: str) -> Optional[bool]:
    raw = (environ.get(name) or "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return None


def detect_convention(platform: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> PathConvention:
    plat = platform or sys.platform
    env = os.environ if environ is None else environ

    if plat.startswith("win"):
        base = WINDOWS
    elif plat == "darwin":
        base = MACOS
    else:
        base = POSIX

    drive_letters = _env_flag(env, "MCP_PATH_DRIVE_LETTERS")
    case_fold = _env_flag(env, "MCP_PATH_CASE_FOLD")
    return PathConvention(
        drive_letters=base.drive_letters if drive_letters is None else drive_letters,
        case_fold=base.case_fold if case_fold is None else case_fold,
    )


def expand_home(raw: str, home: Optional[str] = None) -> str:
    if not raw.startswith("~"):
        return raw
    return (home if home is not None else os.path.expanduser("~")) + raw[1:]


def convert_to_windows_path(raw: str, convention: PathConvention) -> str:
    """
    Rewrite WSL (`/mnt/c/...`) and Git Bash (`/c/...`) spellings of a drive
    path to `C:\\...`. Identity unless the convention uses drive letters.
    """
    if not convention.drive_letters:
        return raw

    m = _MNT_DRIVE.match(raw)
    if m:
        rest = m.group(2) or "/"
        return m.group(1).upper() + ":" + rest.replace("/", "\\")

    m = _SHORT_DRIVE.match(raw)
    if m and len(raw) > 3:
        return m.group(1).upper() + ":\\" + m.group(2).replace("/", "\\")

    if _FORWARD_DRIVE.match(raw):
        return raw[0].upper() + raw[1:].replace("/", "\\")

    return raw


def normalize_path(raw: str, convention: PathConvention) -> str:
    # syntactic only: no symlink resolution, no filesystem access
    return convention.flavour.normpath(convert_to_windows_path(raw, convention))

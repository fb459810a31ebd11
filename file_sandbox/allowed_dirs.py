from typing import Iterable, Iterator, List, Tuple

from file_sandbox.path_utils import POSIX, PathConvention


class AllowedDirectories:
    """
    Current set of allowed root directories.

    The set is held as one immutable tuple and only ever swapped wholesale,
    so a caller that took a snapshot keeps seeing exactly that list even if
    `replace` runs while it is still working.
    """

    def __init__(self, convention: PathConvention = POSIX) -> None:
        self.convention = convention
        self._dirs: Tuple[str, ...] = ()

    def replace(self, dirs: Iterable[str]) -> Tuple[str, ...]:
        seen = set()
        unique: List[str] = []
        for d in dirs:
            key = self.convention.comparison_key(d)
            if key in seen:
                continue
            seen.add(key)
            unique.append(d)

        new = tuple(unique)
        self._dirs = new
        return new

    def snapshot(self) -> Tuple[str, ...]:
        return self._dirs

    def __len__(self) -> int:
        return len(self._dirs)

    def __bool__(self) -> bool:
        return bool(self._dirs)

    def __iter__(self) -> Iterator[str]:
        return iter(self._dirs)

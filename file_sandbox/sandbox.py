import asyncio
import logging
import os
from typing import Any, Callable, Iterable, List, Optional, Tuple

from mcp import types

from file_sandbox.allowed_dirs import AllowedDirectories
from file_sandbox.config import Settings
from file_sandbox.path_safety import ValidationOutcome, real_path, validate_path
from file_sandbox.roots import get_valid_root_directories

_log = logging.getLogger(__name__)

NOT_READY_MESSAGE = (
    "Server cannot operate: No allowed directories available. "
    "Start the server with directory arguments, or use a client that supports "
    "the MCP roots protocol and provides valid root directories."
)

_ROOTS_CAPABILITY = types.ClientCapabilities(roots=types.RootsCapability())


class Sandbox:
    """
    Serving context for one server process: settings, path convention and
    the allowed-directory registry, plus client roots bookkeeping.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        logger: Optional[logging.Logger] = None,
        cwd: Optional[str] = None,
        realpath: Callable[[str], str] = real_path,
        stat: Callable[[str], Any] = os.stat,
    ) -> None:
        self.settings = settings
        self.convention = settings.convention
        self.registry = AllowedDirectories(self.convention)
        self.log = logger or _log
        self.cwd = cwd
        self._realpath = realpath
        self._stat = stat
        # bumped by every change notification; roots are current while the two match
        self._roots_generation = 1
        self._fetched_generation = 0
        self._roots_lock = asyncio.Lock()

    def validate(self, path: str) -> ValidationOutcome:
        # one snapshot per call: a concurrent replace() cannot change what this call sees
        allowed = self.registry.snapshot()
        return validate_path(
            path,
            allowed,
            convention=self.convention,
            cwd=self.cwd,
            relative_to_roots=self.settings.relative_to_roots,
            realpath=self._realpath,
            stat=self._stat,
            logger=self.log,
        )

    def list_allowed(self) -> Tuple[str, ...]:
        return self.registry.snapshot()

    def not_ready_reason(self) -> Optional[str]:
        if self.registry:
            return None
        return NOT_READY_MESSAGE

    def apply_roots(self, roots: Iterable[Any]) -> List[str]:
        valid = get_valid_root_directories(
            roots,
            convention=self.convention,
            cwd=self.cwd,
            realpath=self._realpath,
            logger=self.log,
        )
        if valid:
            self.registry.replace(valid)
            self.log.info("Updated allowed directories from MCP roots: %d valid directories", len(valid))
        else:
            self.log.warning("No valid root directories provided by client, keeping current settings")
        return valid

    def mark_roots_stale(self) -> None:
        self._roots_generation += 1

    @property
    def roots_stale(self) -> bool:
        return self._fetched_generation != self._roots_generation

    async def refresh_roots(self, session: Any) -> None:
        """
        Pull the client's roots if they have not been fetched yet in this
        session or the client announced a change since the last fetch.

        Concurrent callers wait for the fetch already in flight instead of
        validating against the registry it is about to replace.
        """
        if session is None or not self.roots_stale:
            return

        async with self._roots_lock:
            generation = self._roots_generation
            if self._fetched_generation == generation:
                return
            try:
                await self._fetch_roots(session)
            finally:
                self._fetched_generation = generation

    async def _fetch_roots(self, session: Any) -> None:
        if not session.check_client_capability(_ROOTS_CAPABILITY):
            if self.registry:
                self.log.info(
                    "Client does not support MCP Roots, using allowed directories set from server args: %s",
                    ", ".join(self.registry.snapshot()),
                )
            else:
                self.log.error(NOT_READY_MESSAGE)
            return

        try:
            result = await session.list_roots()
        except Exception as e:
            self.log.warning("Failed to request roots from client: %s", e)
            return

        roots = getattr(result, "roots", None)
        if not roots:
            self.log.warning("Client returned no roots set, keeping current settings")
            return
        self.apply_roots(roots)

import logging
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from mcp import types
from mcp.server.fastmcp import Context, FastMCP

from file_sandbox.config import (
    Settings,
    StartupError,
    load_settings,
    resolve_startup_directories,
    verify_startup_directories,
)
from file_sandbox.file_tools import (
    list_allowed_directories_impl,
    read_file_window_impl,
    read_text_file_impl,
)
from file_sandbox.sandbox import Sandbox

load_dotenv()

# IMPORTANT: Do not print to stdout in stdio servers. Use logging (stderr) only.
logging.basicConfig(level=logging.INFO)
log = logging.getLogger("file-sandbox")

mcp = FastMCP("file-sandbox")

# Replaced by main() once command-line directories are known.
sandbox = Sandbox(Settings(), logger=log)


# -----------------------------------------------------------------------------
# ROOTS PROTOCOL
# -----------------------------------------------------------------------------

async def _on_roots_list_changed(notification: types.RootsListChangedNotification) -> None:
    log.info("Client roots changed; refetching before the next tool call")
    sandbox.mark_roots_stale()


# The low-level server only has a decorator for progress notifications; other
# notification types are registered through its notification_handlers table.
mcp._mcp_server.notification_handlers[types.RootsListChangedNotification] = _on_roots_list_changed


async def _sync_roots(ctx: Optional[Context]) -> None:
    if ctx is None:
        return
    await sandbox.refresh_roots(ctx.session)


# -----------------------------------------------------------------------------
# TOOLS
# -----------------------------------------------------------------------------

@mcp.tool()
async def read_text_file(path: str, max_chars: int = 0, ctx: Context = None) -> Dict[str, Any]:
    """
    Read a text file inside the allowed directories and return its content.

    Bytes are decoded as UTF-8 with replacement. When max_chars is positive
    (or MCP_MAX_READ_CHARS is set) the text is cut at that length and marked
    with "... [truncated]". Only works within allowed directories.
    """
    await _sync_roots(ctx)
    return read_text_file_impl(path=path, max_chars=max_chars, sandbox=sandbox, logger=log)


@mcp.tool()
async def read_file_window(path: str, line: int, radius: int = 25, ctx: Context = None) -> Dict[str, Any]:
    """
    Return numbered lines around a line number in a file inside the allowed directories.
    """
    await _sync_roots(ctx)
    return read_file_window_impl(path=path, line=line, radius=radius, sandbox=sandbox, logger=log)


@mcp.tool()
async def list_allowed_directories(ctx: Context = None) -> Dict[str, Any]:
    """
    Returns the list of directories that this server is allowed to access.
    Subdirectories within these allowed directories are also accessible.
    """
    await _sync_roots(ctx)
    return list_allowed_directories_impl(sandbox=sandbox)


# -----------------------------------------------------------------------------
# STARTUP
# -----------------------------------------------------------------------------

def build_sandbox(argv: List[str]) -> Sandbox:
    settings = load_settings(argv)
    dirs = resolve_startup_directories(settings.allowed_dirs, settings.convention)
    verify_startup_directories(dirs, logger=log)

    box = Sandbox(settings, logger=log)
    box.registry.replace(dirs)
    return box


def main(argv: Optional[List[str]] = None) -> None:
    global sandbox

    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        log.info("Usage: file-sandbox [allowed-directory] [additional-directories...]")
        log.info("Allowed directories can also come from MCP_ALLOWED_ROOTS or the client's MCP roots.")

    try:
        sandbox = build_sandbox(args)
    except StartupError as e:
        log.error("%s", e)
        sys.exit(1)

    logging.getLogger().setLevel(sandbox.settings.log_level)
    if not sandbox.registry:
        log.warning("Started without allowed directories - waiting for client to provide roots via MCP protocol")

    log.info("file-sandbox running on stdio")
    mcp.run()


if __name__ == "__main__":
    main()

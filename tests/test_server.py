import asyncio
from types import SimpleNamespace

import pytest
from mcp import types

import server as mod
from file_sandbox.config import Settings
from file_sandbox.path_utils import POSIX
from file_sandbox.sandbox import NOT_READY_MESSAGE, Sandbox


class FakeSession:
    def __init__(self, roots=None, supports_roots=True, error=None):
        self.roots = roots or []
        self.supports_roots = supports_roots
        self.error = error
        self.list_calls = 0

    def check_client_capability(self, capability):
        return self.supports_roots

    async def list_roots(self):
        self.list_calls += 1
        if self.error is not None:
            raise self.error
        return types.ListRootsResult(roots=self.roots)


@pytest.fixture
def box(tmp_path, monkeypatch):
    start = tmp_path.resolve() / "start"
    start.mkdir()
    b = Sandbox(Settings(convention=POSIX), logger=mod.log)
    b.registry.replace([str(start)])
    monkeypatch.setattr(mod, "sandbox", b)
    return b


def _ctx(session):
    return SimpleNamespace(session=session)


def _root(path):
    return types.Root(uri=f"file://{path}", name=path.name)


def test_read_text_file_tool(box):
    start = box.list_allowed()[0]
    with open(start + "/a.txt", "w", encoding="utf-8") as fh:
        fh.write("content")

    res = asyncio.run(mod.read_text_file(path=start + "/a.txt"))
    assert res["ok"] is True
    assert res["text"] == "content"


def test_read_file_window_tool(box):
    start = box.list_allowed()[0]
    with open(start + "/a.py", "w", encoding="utf-8") as fh:
        fh.write("one\ntwo\nthree\n")

    res = asyncio.run(mod.read_file_window(path=start + "/a.py", line=2, radius=5))
    assert res["focus_line"] == 2
    assert [x["text"] for x in res["content"]] == ["one", "two", "three"]


def test_roots_fetched_once_then_on_change(box, tmp_path):
    client_root = tmp_path.resolve() / "client"
    client_root.mkdir()
    session = FakeSession(roots=[_root(client_root)])

    res = asyncio.run(mod.list_allowed_directories(ctx=_ctx(session)))
    assert res["directories"] == [str(client_root)]
    assert session.list_calls == 1

    asyncio.run(mod.list_allowed_directories(ctx=_ctx(session)))
    assert session.list_calls == 1

    newer = tmp_path.resolve() / "newer"
    newer.mkdir()
    session.roots = [_root(newer)]
    asyncio.run(mod._on_roots_list_changed(types.RootsListChangedNotification(method="notifications/roots/list_changed")))

    res = asyncio.run(mod.list_allowed_directories(ctx=_ctx(session)))
    assert res["directories"] == [str(newer)]
    assert session.list_calls == 2


def test_invalid_roots_keep_previous_set(box, tmp_path):
    before = box.list_allowed()
    session = FakeSession(roots=[_root(tmp_path / "missing")])

    res = asyncio.run(mod.list_allowed_directories(ctx=_ctx(session)))
    assert tuple(res["directories"]) == before


def test_roots_request_failure_keeps_previous_set(box):
    before = box.list_allowed()
    session = FakeSession(error=RuntimeError("client went away"))

    res = asyncio.run(mod.list_allowed_directories(ctx=_ctx(session)))
    assert tuple(res["directories"]) == before
    assert session.list_calls == 1


def test_client_without_roots_support(tmp_path, monkeypatch):
    empty = Sandbox(Settings(convention=POSIX), logger=mod.log)
    monkeypatch.setattr(mod, "sandbox", empty)
    session = FakeSession(supports_roots=False)

    res = asyncio.run(mod.read_text_file(path=str(tmp_path / "x.txt"), ctx=_ctx(session)))
    assert res == {"ok": False, "error": NOT_READY_MESSAGE}
    assert session.list_calls == 0


def test_roots_notification_handler_is_registered():
    handlers = mod.mcp._mcp_server.notification_handlers
    assert handlers[types.RootsListChangedNotification] is mod._on_roots_list_changed


def test_main_loads_directories(tmp_path, monkeypatch):
    d = tmp_path.resolve() / "served"
    d.mkdir()
    monkeypatch.delenv("MCP_ALLOWED_ROOTS", raising=False)
    monkeypatch.setattr(mod, "sandbox", mod.sandbox)
    ran = []
    monkeypatch.setattr(mod.mcp, "run", lambda *a, **k: ran.append(True))

    mod.main([str(d)])

    assert ran == [True]
    assert mod.sandbox.list_allowed() == (str(d),)


def test_main_exits_on_missing_directory(tmp_path, monkeypatch):
    monkeypatch.delenv("MCP_ALLOWED_ROOTS", raising=False)
    monkeypatch.setattr(mod, "sandbox", mod.sandbox)
    monkeypatch.setattr(mod.mcp, "run", lambda *a, **k: pytest.fail("server should not start"))

    with pytest.raises(SystemExit) as exc:
        mod.main([str(tmp_path / "nope")])
    assert exc.value.code == 1


def test_main_starts_without_directories(monkeypatch):
    monkeypatch.delenv("MCP_ALLOWED_ROOTS", raising=False)
    monkeypatch.setattr(mod, "sandbox", mod.sandbox)
    monkeypatch.setattr(mod.mcp, "run", lambda *a, **k: None)

    mod.main([])
    assert mod.sandbox.list_allowed() == ()


class SlowSession(FakeSession):
    async def list_roots(self):
        await asyncio.sleep(0.05)
        return await super().list_roots()


def test_concurrent_first_calls_wait_for_roots(tmp_path, monkeypatch):
    client_root = tmp_path.resolve() / "client"
    client_root.mkdir()
    (client_root / "a.txt").write_text("hi", encoding="utf-8")
    empty = Sandbox(Settings(convention=POSIX), logger=mod.log)
    monkeypatch.setattr(mod, "sandbox", empty)
    session = SlowSession(roots=[_root(client_root)])

    async def both():
        return await asyncio.gather(
            mod.read_text_file(path=str(client_root / "a.txt"), ctx=_ctx(session)),
            mod.read_text_file(path=str(client_root / "a.txt"), ctx=_ctx(session)),
        )

    results = asyncio.run(both())
    assert [r["text"] for r in results] == ["hi", "hi"]
    assert session.list_calls == 1


def test_change_during_fetch_triggers_another_fetch(box, tmp_path):
    first = tmp_path.resolve() / "first"
    second = tmp_path.resolve() / "second"
    first.mkdir()
    second.mkdir()

    class ChangingSession(FakeSession):
        async def list_roots(self):
            result = await super().list_roots()
            # the client changes its roots while this answer is in flight
            box.mark_roots_stale()
            self.roots = [_root(second)]
            return result

    session = ChangingSession(roots=[_root(first)])

    res = asyncio.run(mod.list_allowed_directories(ctx=_ctx(session)))
    assert res["directories"] == [str(first)]

    res = asyncio.run(mod.list_allowed_directories(ctx=_ctx(session)))
    assert res["directories"] == [str(second)]
    assert session.list_calls == 2

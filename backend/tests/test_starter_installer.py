from __future__ import annotations

import asyncio
import io
import zipfile
from pathlib import Path
from typing import AsyncIterator, Iterable

import httpx
import pytest

from codecoach.client_state import PENDING_STARTER_SLOT, FileStateStore
from codecoach.errors import ArchiveError, NetworkError, SizeLimitError
from codecoach.host import BridgeWorkspace, HostBridge
from codecoach.starter_installer import (
    StarterInstaller,
    choose_files_to_open,
    read_archive,
    sanitize_entry_path,
)

DOWNLOAD_URL = "https://files.test/starter.zip"


def _zip(entries: Iterable[tuple[str, bytes]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, payload in entries:
            archive.writestr(name, payload)
    return buffer.getvalue()


STARTER = _zip(
    [
        ("src/main.py", b"print('hi')\n"),
        ("README.md", b"# Starter\n"),
        ("../escape.txt", b"outside?"),
        ("/etc/abs.txt", b"absolute"),
        ("C:/windows/drive.txt", b"drive"),
        ("docs/", b""),
    ]
)


class _Archives:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.resolved: list[str] = []

    async def resolve_url(self, archive_ref: str) -> str:
        self.resolved.append(archive_ref)
        if self.error is not None:
            raise self.error
        return DOWNLOAD_URL


def _http(payload: bytes, **headers: str) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=payload, headers=headers)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _installer(
    tmp_path: Path,
    *,
    folders: list[Path],
    payload: bytes = STARTER,
    archives: _Archives | None = None,
    max_bytes: int = 1024 * 1024,
    max_extracted_bytes: int = 1024 * 1024,
    max_open: int = 5,
    default_folder: Path | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> tuple[StarterInstaller, HostBridge, FileStateStore]:
    bridge = HostBridge()
    workspace = BridgeWorkspace(bridge, folders=folders, default_folder=default_folder)
    state = FileStateStore(tmp_path / "state" / "slots.json")
    installer = StarterInstaller(
        workspace,
        archives or _Archives(),
        state,
        http_client=http_client or _http(payload),
        max_bytes=max_bytes,
        max_extracted_bytes=max_extracted_bytes,
        max_open=max_open,
    )
    return installer, bridge, state


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("src/main.py", "src/main.py"),
        ("../../etc/passwd", "etc/passwd"),
        ("/abs/file.txt", "abs/file.txt"),
        ("C:\\Users\\me\\a.txt", "Users/me/a.txt"),
        ("./a/./b/../c.txt", "a/b/c.txt"),
        ("../..", None),
        ("", None),
    ],
)
def test_sanitize_entry_path(name: str, expected: str | None) -> None:
    assert sanitize_entry_path(name) == expected


def test_install_writes_every_entry_inside_the_workspace(tmp_path: Path) -> None:
    workspace_root = tmp_path / "ws"
    workspace_root.mkdir()
    installer, bridge, _ = _installer(tmp_path, folders=[workspace_root])

    result = asyncio.run(installer.install("cs101/starter.zip"))

    assert result.outcome == "installed"
    assert sorted(result.written) == ["README.md", "escape.txt", "etc/abs.txt", "src/main.py", "windows/drive.txt"]
    assert (workspace_root / "escape.txt").read_bytes() == b"outside?"
    assert (workspace_root / "etc" / "abs.txt").exists()
    assert not (tmp_path / "escape.txt").exists()
    # README is opened ahead of enumeration order when no files are suggested.
    assert result.opened[0] == "README.md"
    opened_paths = [event.path for event in bridge.events_after(0) if event.kind == "open_file"]
    assert opened_paths[0] == str(workspace_root / "README.md")


def test_install_opens_suggested_files_and_caps_count(tmp_path: Path) -> None:
    workspace_root = tmp_path / "ws"
    workspace_root.mkdir()
    installer, _, _ = _installer(tmp_path, folders=[workspace_root], max_open=1)

    result = asyncio.run(installer.install("ref", ["missing.py", "src/main.py", "README.md"]))

    assert result.opened == ("src/main.py",)


def test_choose_files_to_open_prefers_readmes() -> None:
    assert choose_files_to_open(["a.py", "docs/README.txt", "b.py"], []) == ["docs/README.txt", "a.py", "b.py"]
    assert choose_files_to_open(["a.py"], ["../b.py", "b.py"]) == ["b.py"]


def test_declared_size_over_limit_aborts_before_download(tmp_path: Path) -> None:
    workspace_root = tmp_path / "ws"
    workspace_root.mkdir()
    installer, _, _ = _installer(tmp_path, folders=[workspace_root], max_bytes=64)

    with pytest.raises(SizeLimitError):
        asyncio.run(installer.install("ref"))

    assert list(workspace_root.iterdir()) == []


def test_streamed_size_over_limit_aborts_without_declared_length(tmp_path: Path) -> None:
    async def chunks() -> AsyncIterator[bytes]:
        for _ in range(10):
            yield b"x" * 32

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=chunks())

    workspace_root = tmp_path / "ws"
    workspace_root.mkdir()
    installer, _, _ = _installer(
        tmp_path,
        folders=[workspace_root],
        max_bytes=100,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    with pytest.raises(SizeLimitError):
        asyncio.run(installer.install("ref"))
    assert list(workspace_root.iterdir()) == []


def test_extracted_size_over_limit_writes_nothing(tmp_path: Path) -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("big.bin", b"\0" * (4 * 1024 * 1024))
    bomb = buffer.getvalue()
    workspace_root = tmp_path / "ws"
    workspace_root.mkdir()
    installer, _, _ = _installer(
        tmp_path, folders=[workspace_root], payload=bomb, max_extracted_bytes=1024 * 1024
    )

    assert len(bomb) < 64 * 1024
    with pytest.raises(SizeLimitError):
        asyncio.run(installer.install("ref"))
    assert list(workspace_root.iterdir()) == []


def test_read_archive_limits_the_total_across_entries() -> None:
    data = _zip([("a.txt", b"a" * 600), ("b.txt", b"b" * 600)])

    with pytest.raises(SizeLimitError):
        read_archive(data, max_extracted_bytes=1000)

    plan = read_archive(data, max_extracted_bytes=1200)
    assert [name for name, _ in plan.entries] == ["a.txt", "b.txt"]


def test_corrupt_archive_writes_nothing(tmp_path: Path) -> None:
    workspace_root = tmp_path / "ws"
    workspace_root.mkdir()
    installer, _, _ = _installer(tmp_path, folders=[workspace_root], payload=b"definitely not a zip")

    with pytest.raises(ArchiveError):
        asyncio.run(installer.install("ref"))
    assert list(workspace_root.iterdir()) == []


def test_without_workspace_installation_is_deferred_then_resumed(tmp_path: Path) -> None:
    chosen = tmp_path / "chosen"
    installer, bridge, state = _installer(tmp_path, folders=[], default_folder=chosen)

    deferred = asyncio.run(installer.install("cs101/starter.zip", ["src/main.py"]))

    assert deferred.outcome == "deferred"
    assert deferred.destination == chosen
    assert state.get(PENDING_STARTER_SLOT)["archive_ref"] == "cs101/starter.zip"
    assert [event.path for event in bridge.events_after(0) if event.kind == "open_folder"] == [str(chosen)]
    assert not (chosen / "src" / "main.py").exists()

    # The host restarts: a fresh installer with no open folder reads the same slot.
    asyncio.run(installer.aclose())
    restarted, restarted_bridge, _ = _installer(tmp_path, folders=[])
    resumed = asyncio.run(restarted.resume_pending())

    assert resumed is not None and resumed.outcome == "installed"
    assert (chosen / "src" / "main.py").exists()
    assert resumed.destination == chosen
    assert resumed.opened == ("src/main.py",)
    assert [event.path for event in restarted_bridge.events_after(0) if event.kind == "open_file"] == [
        str(chosen / "src" / "main.py")
    ]
    assert state.get(PENDING_STARTER_SLOT) is None
    assert asyncio.run(restarted.resume_pending()) is None


def test_cancelled_folder_choice_persists_nothing(tmp_path: Path) -> None:
    installer, _, state = _installer(tmp_path, folders=[], default_folder=None)

    result = asyncio.run(installer.install("ref"))

    assert result.outcome == "cancelled"
    assert state.get(PENDING_STARTER_SLOT) is None


def test_pending_slot_survives_retryable_failures_only(tmp_path: Path) -> None:
    workspace_root = tmp_path / "ws"
    workspace_root.mkdir()
    archives = _Archives(error=NetworkError("store down"))
    installer, _, state = _installer(tmp_path, folders=[workspace_root], archives=archives)
    state.set(PENDING_STARTER_SLOT, {"archive_ref": "ref", "suggested_open": []})

    with pytest.raises(NetworkError):
        asyncio.run(installer.resume_pending())
    assert state.get(PENDING_STARTER_SLOT) is not None

    archives.error = NetworkError("gone", status_code=404, retryable=False)
    with pytest.raises(NetworkError):
        asyncio.run(installer.resume_pending())
    assert state.get(PENDING_STARTER_SLOT) is None


def test_unreadable_pending_slot_is_discarded(tmp_path: Path) -> None:
    workspace_root = tmp_path / "ws"
    workspace_root.mkdir()
    installer, _, state = _installer(tmp_path, folders=[workspace_root])
    state.set(PENDING_STARTER_SLOT, {"unexpected": True})

    assert asyncio.run(installer.resume_pending()) is None
    assert state.get(PENDING_STARTER_SLOT) is None

"""Starter bundle installation into the learner workspace.

Archives are downloaded fully into memory under a byte cap and every entry is
read and validated before the first file is written. Entry names are reduced
to safe relative paths so no entry can escape the destination root. When no
workspace folder is open the installation is persisted as a pending
continuation and resumed on the next activation.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import List, Literal, Optional, Sequence, Tuple

import httpx
from pydantic import ValidationError

from .client_state import PENDING_STARTER_SLOT, StateStore
from .errors import ArchiveError, CoachError, NetworkError, SizeLimitError, WorkspaceError
from .host import Workspace
from .models import PendingStarterInstallation
from .store_clients import ArchiveStoreClient
from .telemetry import emit_event

logger = logging.getLogger(__name__)

DEFAULT_MAX_ARCHIVE_BYTES = 50 * 1024 * 1024
DEFAULT_MAX_EXTRACTED_BYTES = 200 * 1024 * 1024
DEFAULT_MAX_OPEN_FILES = 5

_READ_CHUNK_BYTES = 64 * 1024

_DRIVE_RE = re.compile(r"^[A-Za-z]:$")

InstallOutcome = Literal["installed", "deferred", "cancelled"]


@dataclass(frozen=True)
class InstallResult:
    outcome: InstallOutcome
    destination: Optional[Path] = None
    written: Tuple[str, ...] = ()
    skipped: Tuple[str, ...] = ()
    opened: Tuple[str, ...] = ()


@dataclass
class _ArchivePlan:
    entries: List[Tuple[str, bytes]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def sanitize_entry_path(name: str) -> Optional[str]:
    """Return a safe POSIX relative path for an archive entry, or ``None`` to skip it."""
    segments = [segment for segment in name.replace("\\", "/").split("/") if segment not in ("", ".", "..")]
    if segments and _DRIVE_RE.match(segments[0]):
        segments = segments[1:]
    if not segments:
        return None
    return "/".join(segments)


async def download_archive(client: httpx.AsyncClient, url: str, *, max_bytes: int) -> bytes:
    """Download ``url`` into memory, enforcing ``max_bytes`` on the declared and actual size."""
    try:
        async with client.stream("GET", url) as response:
            if response.is_error:
                raise NetworkError(
                    f"Starter download failed: {response.status_code} {response.reason_phrase}",
                    status_code=response.status_code,
                )
            declared = response.headers.get("Content-Length")
            if declared is not None and declared.isdigit() and int(declared) > max_bytes:
                raise SizeLimitError(
                    f"Starter bundle is too large ({int(declared)} bytes; limit is {max_bytes} bytes)."
                )
            buffer = bytearray()
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > max_bytes:
                    raise SizeLimitError(f"Starter bundle exceeded the {max_bytes} byte limit while downloading.")
            return bytes(buffer)
    except httpx.HTTPError as exc:
        raise NetworkError(f"Starter download failed: {exc}") from exc


def read_archive(data: bytes, *, max_extracted_bytes: int = DEFAULT_MAX_EXTRACTED_BYTES) -> _ArchivePlan:
    """Read every file entry into memory; raise before anything is written.

    ``max_extracted_bytes`` bounds the unpacked total, checked against the
    declared entry sizes up front and again while decompressing.
    """
    plan = _ArchivePlan()
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            files = [info for info in archive.infolist() if not info.is_dir()]
            declared = sum(info.file_size for info in files)
            if declared > max_extracted_bytes:
                raise SizeLimitError(
                    f"Starter bundle expands to {declared} bytes; limit is {max_extracted_bytes} bytes."
                )
            extracted = 0
            for info in files:
                relative = sanitize_entry_path(info.filename)
                if relative is None:
                    plan.skipped.append(info.filename)
                    continue
                chunks: List[bytes] = []
                with archive.open(info) as handle:
                    while True:
                        chunk = handle.read(_READ_CHUNK_BYTES)
                        if not chunk:
                            break
                        extracted += len(chunk)
                        if extracted > max_extracted_bytes:
                            raise SizeLimitError(
                                f"Starter bundle exceeded the {max_extracted_bytes} byte extraction limit."
                            )
                        chunks.append(chunk)
                plan.entries.append((relative, b"".join(chunks)))
    except SizeLimitError:
        raise
    except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
        raise ArchiveError(f"Starter bundle is not a valid zip archive: {exc}") from exc
    except (NotImplementedError, RuntimeError) as exc:
        # Unsupported compression methods or encrypted entries.
        raise ArchiveError(f"Starter bundle cannot be extracted: {exc}") from exc
    return plan


def write_entries(destination: Path, entries: Sequence[Tuple[str, bytes]]) -> List[str]:
    root = destination.resolve()
    written: List[str] = []
    for relative, payload in entries:
        target = root / relative
        if not target.resolve().is_relative_to(root):
            # Symlinked directories inside the workspace can still point outside it.
            logger.warning("Skipping starter entry %s: resolves outside %s", relative, root)
            continue
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        except OSError as exc:
            logger.error(
                "Starter install stopped after %s of %s files; %s may be partially populated",
                len(written),
                len(entries),
                root,
            )
            raise WorkspaceError(f"Failed to write starter file {relative}: {exc}") from exc
        written.append(relative)
    return written


def choose_files_to_open(written: Sequence[str], suggested: Sequence[str]) -> List[str]:
    """Open candidates in priority order: suggested files when given, else READMEs then enumeration order."""
    if suggested:
        candidates = [path for path in (sanitize_entry_path(item) for item in suggested) if path]
    else:
        readmes = [path for path in written if PurePosixPath(path).name.lower().startswith("readme")]
        candidates = readmes + [path for path in written if path not in readmes]
    return list(dict.fromkeys(candidates))


class StarterInstaller:
    def __init__(
        self,
        workspace: Workspace,
        archives: ArchiveStoreClient,
        state: StateStore,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        max_bytes: int = DEFAULT_MAX_ARCHIVE_BYTES,
        max_extracted_bytes: int = DEFAULT_MAX_EXTRACTED_BYTES,
        max_open: int = DEFAULT_MAX_OPEN_FILES,
        timeout: float = 60.0,
    ) -> None:
        self._workspace = workspace
        self._archives = archives
        self._state = state
        self._http = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._owns_http = http_client is None
        self._max_bytes = max_bytes
        self._max_extracted_bytes = max_extracted_bytes
        self._max_open = max_open

    def _destination(self) -> Optional[Path]:
        folders = list(self._workspace.folders())
        return Path(folders[0]) if folders else None

    def pending(self) -> Optional[PendingStarterInstallation]:
        raw = self._state.get(PENDING_STARTER_SLOT)
        if raw is None:
            return None
        try:
            return PendingStarterInstallation.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding unreadable pending starter installation: %s", raw)
            self._state.delete(PENDING_STARTER_SLOT)
            return None

    async def install(self, archive_ref: str, suggested_open: Sequence[str] = ()) -> InstallResult:
        destination = self._destination()
        if destination is None:
            return await self._defer(archive_ref, suggested_open)
        return await self._install_into(destination, archive_ref, suggested_open)

    async def resume_pending(self) -> Optional[InstallResult]:
        """Complete a deferred installation once a workspace folder is open."""
        pending = self.pending()
        if pending is None:
            return None
        destination = pending.destination or self._destination()
        if destination is None:
            logger.info("Pending starter installation kept: no workspace folder is open yet")
            return None
        try:
            result = await self._install_into(destination, pending.archive_ref, pending.suggested_open)
        except CoachError as exc:
            if not exc.retryable:
                # Replaying an over-size or corrupt archive can never succeed.
                self._state.delete(PENDING_STARTER_SLOT)
                logger.warning("Abandoned pending starter installation for %s: %s", pending.archive_ref, exc)
            raise
        self._state.delete(PENDING_STARTER_SLOT)
        return result

    async def _defer(self, archive_ref: str, suggested_open: Sequence[str]) -> InstallResult:
        folder = await self._workspace.choose_folder()
        if folder is None:
            logger.info("Starter installation cancelled: no destination folder chosen")
            return InstallResult(outcome="cancelled")
        pending = PendingStarterInstallation(
            archive_ref=archive_ref,
            suggested_open=list(suggested_open),
            destination=folder,
        )
        self._state.set(PENDING_STARTER_SLOT, pending.model_dump(mode="json"))
        emit_event("starter_deferred", archive_ref=archive_ref, folder=str(folder))
        await self._workspace.open_folder(folder)
        return InstallResult(outcome="deferred", destination=folder)

    async def _install_into(
        self,
        destination: Path,
        archive_ref: str,
        suggested_open: Sequence[str],
    ) -> InstallResult:
        url = await self._archives.resolve_url(archive_ref)
        data = await download_archive(self._http, url, max_bytes=self._max_bytes)
        plan = read_archive(data, max_extracted_bytes=self._max_extracted_bytes)
        written = await asyncio.to_thread(write_entries, destination, plan.entries)
        opened = await self._open_files(destination, written, suggested_open)
        logger.info(
            "Installed starter bundle %s into %s (written=%s, skipped=%s)",
            archive_ref,
            destination,
            len(written),
            len(plan.skipped),
        )
        emit_event(
            "starter_installed",
            archive_ref=archive_ref,
            destination=str(destination),
            written=len(written),
            skipped=len(plan.skipped),
        )
        return InstallResult(
            outcome="installed",
            destination=destination,
            written=tuple(written),
            skipped=tuple(plan.skipped),
            opened=tuple(opened),
        )

    async def _open_files(self, destination: Path, written: Sequence[str], suggested: Sequence[str]) -> List[str]:
        opened: List[str] = []
        for relative in choose_files_to_open(written, suggested):
            if len(opened) >= self._max_open:
                break
            try:
                await self._workspace.open_file(destination / relative)
            except OSError:
                continue
            opened.append(relative)
        return opened

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


__all__ = [
    "DEFAULT_MAX_ARCHIVE_BYTES",
    "DEFAULT_MAX_EXTRACTED_BYTES",
    "DEFAULT_MAX_OPEN_FILES",
    "InstallResult",
    "StarterInstaller",
    "choose_files_to_open",
    "download_archive",
    "read_archive",
    "sanitize_entry_path",
    "write_entries",
]

from __future__ import annotations

import asyncio
import tarfile
from pathlib import Path

import aiohttp
from structlog.typing import FilteringBoundLogger

from provisioner.errors import ProvisionError


CHUNK_SIZE = 64 * 1024


async def download_archive(
    session: aiohttp.ClientSession,
    url: str,
    dest: Path,
    log_event: FilteringBoundLogger,
    *,
    sock_read_timeout_sec: float = 30.0,
) -> Path:
    """Stream `url` into `dest`. An existing `dest` is reused as is."""
    if dest.exists():
        log_event.info("archive.download_skipped", path=str(dest), reason="exists")
        return dest

    log_event.info("archive.download_started", url=url, path=str(dest))
    # partial downloads never take the final name
    partial = dest.with_name(dest.name + ".part")
    timeout = aiohttp.ClientTimeout(total=None, sock_read=sock_read_timeout_sec)
    size = 0
    try:
        async with session.get(url, timeout=timeout) as resp:
            if resp.status >= 400:
                raise ProvisionError(f"Download failed: {resp.status} {resp.reason} ({url})")
            with partial.open("wb") as fh:
                async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                    fh.write(chunk)
                    size += len(chunk)
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:  # noqa: UP041
        partial.unlink(missing_ok=True)
        raise ProvisionError(f"Download failed for {url}: {exc!r}") from exc
    except ProvisionError:
        partial.unlink(missing_ok=True)
        raise

    partial.replace(dest)
    log_event.info("archive.downloaded", path=str(dest), bytes=size)
    return dest


def _extract(archive: Path, dest_dir: Path) -> int:
    with tarfile.open(archive, "r:gz") as tar:
        members = tar.getmembers()
        tar.extractall(dest_dir, filter="data")
    return len(members)


async def extract_archive(archive: Path, dest_dir: Path, log_event: FilteringBoundLogger) -> None:
    """Unpack a .tar.gz into an existing directory."""
    log_event.info("archive.extract_started", archive=str(archive), dest=str(dest_dir))
    try:
        count = await asyncio.to_thread(_extract, archive, dest_dir)
    except (tarfile.TarError, OSError) as exc:
        raise ProvisionError(f"Failed to extract {archive}: {exc}") from exc
    log_event.info("archive.extracted", dest=str(dest_dir), members=count)

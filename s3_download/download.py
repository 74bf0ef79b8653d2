from __future__ import annotations
import logging
import threading
from typing import Dict, List, Tuple, Optional, Any
from pathlib import Path
from dataclasses import dataclass
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed
from csv import DictWriter

from botocore.exceptions import BotoCoreError, ClientError
from tqdm import tqdm

from .core import bucket_exists, list_all_keys
from .errors import BucketNotFoundError, DestinationExistsError, StreamError
from .params import DownloadParameters, EncryptionParams
from .utils import (
    ensure_dir,
    set_mtime,
    match_keys,
    relative_key,
    resolve_destination,
    human_bytes,
)

log = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class DownloadTask:
    key: str
    destination: Path
    encryption: Optional[EncryptionParams] = None


def fetch_object(
    s3_client,
    bucket: str,
    key: str,
    dst_path: str | Path,
    encryption: Optional[EncryptionParams] = None,
    preserve_mtime: bool = False,
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """
    Stream one object into dst_path and return the number of bytes written.
    The parent directory must already exist. Any failure on either end of the
    copy is raised as StreamError and the partial file is removed.
    """
    dst = Path(dst_path)
    extra = encryption.request_kwargs() if encryption else {}
    try:
        resp = s3_client.get_object(Bucket=bucket, Key=key, **extra)
    except (ClientError, BotoCoreError) as e:
        raise StreamError(f"Failed to read s3://{bucket}/{key}: {e}") from e

    body = resp["Body"]
    written = 0
    opened = False
    try:
        with open(dst, "wb") as f:
            opened = True
            for chunk in body.iter_chunks(chunk_size):
                f.write(chunk)
                written += len(chunk)
    except (ClientError, BotoCoreError, OSError) as e:
        if opened:
            _discard(dst)
        raise StreamError(f"Failed to download s3://{bucket}/{key} to {dst}: {e}") from e
    finally:
        body.close()

    if preserve_mtime and resp.get("LastModified"):
        set_mtime(dst, resp["LastModified"])
    log.debug("Downloaded %s -> %s (%s)", key, dst, human_bytes(written))
    return written


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log.warning("Could not remove partial file %s: %s", path, e)


def _wait_all(
    futures: Dict[Future, DownloadTask],
    progress: bool = False,
) -> List[Tuple[DownloadTask, int]]:
    """
    Wait for queued fetches and re-raise the first failure. Fetches that had
    not started when it happened end up cancelled and are not reported.
    """
    done: List[Tuple[DownloadTask, int]] = []
    first_error: Optional[BaseException] = None
    bar = tqdm(total=len(futures), desc="Download", unit="obj") if progress and futures else None
    try:
        for f in as_completed(futures):
            task = futures[f]
            try:
                done.append((task, f.result()))
            except CancelledError:
                pass
            except Exception as e:
                if first_error is None:
                    log.error("Download of %s to %s failed", task.key, task.destination)
                    first_error = e
                    for other in futures:
                        other.cancel()
            finally:
                if bar:
                    bar.update(1)
    finally:
        if bar:
            bar.close()

    if first_error is not None:
        raise first_error
    done.sort(key=lambda x: x[0].key)
    return done


def _write_manifest(path: Path, done: List[Tuple[DownloadTask, int]]) -> None:
    ensure_dir(Path(path).parent)
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = DictWriter(f, fieldnames=["key", "local_path", "bytes"])
        w.writeheader()
        for task, size in done:
            w.writerow({"key": task.key, "local_path": str(task.destination), "bytes": size})


def download_files(s3_client, params: DownloadParameters) -> Dict[str, Any]:
    """
    List the bucket once, match every glob in order and download the matches.

    Fetches for a pattern are queued as soon as it is matched. A destination
    that already exists aborts the run with DestinationExistsError unless
    params.overwrite is set; fetches queued before that point still complete.
    """
    target = Path(params.target_folder)
    log.info(
        "Downloading files from %s in bucket %s to %s",
        params.source_prefix or "/",
        params.bucket,
        target,
    )
    if not params.dry_run:
        ensure_dir(target)

    all_keys = list_all_keys(
        s3_client,
        params.bucket,
        prefix=params.source_prefix,
        allow_partial=params.allow_partial_listing,
    )

    planned: List[DownloadTask] = []
    futures: Dict[Future, DownloadTask] = {}
    done: List[Tuple[DownloadTask, int]] = []
    abort = threading.Event()

    def _run(task: DownloadTask) -> int:
        # a failed fetch stops the ones still waiting in the pool queue
        if abort.is_set():
            raise CancelledError()
        try:
            return fetch_object(
                s3_client,
                params.bucket,
                task.key,
                task.destination,
                encryption=task.encryption,
                preserve_mtime=params.preserve_mtime,
            )
        except Exception:
            abort.set()
            raise

    with ThreadPoolExecutor(max_workers=params.max_workers) as ex:
        for pattern in params.globs:
            for key in match_keys(all_keys, params.source_prefix, pattern):
                rel = relative_key(key, params.source_prefix)
                dest = resolve_destination(rel, target, params.flatten)

                if dest.exists():
                    if not params.overwrite:
                        raise DestinationExistsError(str(dest), key)
                    log.warning("File %s already exists and will be overwritten by key %s", dest, key)

                task = DownloadTask(key=key, destination=dest, encryption=params.encryption)
                planned.append(task)
                if params.dry_run:
                    continue

                try:
                    ensure_dir(dest.parent)
                except OSError as e:
                    raise StreamError(
                        f"Cannot create folder {dest.parent} for key {key} (destination {dest}): {e}"
                    ) from e
                log.info("Queueing download of %s", key)
                futures[ex.submit(_run, task)] = task

        if futures:
            done = _wait_all(futures, progress=params.progress)

    if params.manifest_path and not params.dry_run:
        _write_manifest(params.manifest_path, done)

    stats = {
        "bucket": params.bucket,
        "source_prefix": params.source_prefix,
        "target_folder": str(target),
        "globs": list(params.globs),
        "flatten": params.flatten,
        "overwrite": params.overwrite,
        "dry_run": params.dry_run,
        "listed": len(all_keys),
        "total": len(planned),
        "downloaded": len(done),
        "bytes": sum(size for _, size in done),
    }
    if params.dry_run:
        stats["planned"] = [(t.key, str(t.destination)) for t in planned]

    return {
        "downloaded": [(t.key, str(t.destination)) for t, _ in done],
        "stats": stats,
    }


def execute(s3_client, params: DownloadParameters) -> Dict[str, Any]:
    """Check the bucket, then run the download. Raises on the first failure."""
    if not bucket_exists(s3_client, params.bucket):
        raise BucketNotFoundError(f"Bucket {params.bucket} does not exist or is not accessible")

    result = download_files(s3_client, params)
    log.info("Task completed")
    return result

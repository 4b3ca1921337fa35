"""Concurrent, per-run memoization of metadata provider calls."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from packaging.version import Version

from .constants import DEFAULT_FETCH_WORKERS
from .exceptions import FetchError, MetadataError
from .metadata import MetadataProvider
from .models import PackageMetadata, PackageName

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that narrow candidates instead of ending the run.
RECOVERABLE = (FetchError, MetadataError)


class FetchPool:
    """Issues provider calls for distinct packages concurrently.

    Every response is stored once, keyed by name (version listings) or by
    (name, version) (metadata), and handed out unchanged for the rest of the
    run. The first non-recoverable failure of any call cancels whatever is
    still queued and is re-raised on the next wait.
    """

    def __init__(self, provider: MetadataProvider, max_workers: int = DEFAULT_FETCH_WORKERS):
        self.provider = provider
        self._executor: Optional[ThreadPoolExecutor] = None
        if max_workers > 1:
            self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pinflow-fetch")
        self._versions: Dict[PackageName, Future] = {}
        self._metadata: Dict[Tuple[PackageName, Version], Future] = {}
        self._fatal: Optional[BaseException] = None
        self._lock = threading.Lock()

    def __enter__(self) -> "FetchPool":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Submission -----------------------------------------------------------

    def _submit(self, func: Callable[..., T], *args: object) -> "Future[T]":
        if self._executor is None:
            future: Future = Future()
            try:
                future.set_result(func(*args))
            except BaseException as exc:  # noqa: BLE001 - stored on the future
                future.set_exception(exc)
            self._watch(future)
            return future
        future = self._executor.submit(func, *args)
        future.add_done_callback(self._watch)
        return future

    def _watch(self, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is None or isinstance(error, RECOVERABLE):
            return
        with self._lock:
            if self._fatal is None:
                self._fatal = error

    def _list_versions(self, name: PackageName) -> List[Version]:
        return list(self.provider.list_versions(name))

    def _get_metadata(self, name: PackageName, version: Version) -> PackageMetadata:
        record = self.provider.get_metadata(name, version)
        if PackageName(record.name) != name or record.version != version:
            raise MetadataError(f"Metadata for {name}=={version} describes {record.name}=={record.version}")
        return record

    def prefetch_versions(self, names: Iterable[PackageName]) -> None:
        for name in names:
            if name not in self._versions:
                self._versions[name] = self._submit(self._list_versions, name)

    def prefetch_metadata(self, name: PackageName, version: Version) -> None:
        key = (name, version)
        if key not in self._metadata:
            self._metadata[key] = self._submit(self._get_metadata, name, version)

    # Waiting --------------------------------------------------------------

    def _wait(self, future: "Future[T]") -> T:
        self._raise_fatal()
        try:
            return future.result()
        except RECOVERABLE:
            raise
        except BaseException:
            self.cancel()
            raise

    def _raise_fatal(self) -> None:
        with self._lock:
            fatal = self._fatal
        if fatal is not None:
            self.cancel()
            raise fatal

    def versions(self, name: PackageName) -> List[Version]:
        self.prefetch_versions([name])
        return self._wait(self._versions[name])

    def metadata(self, name: PackageName, version: Version) -> PackageMetadata:
        self.prefetch_metadata(name, version)
        return self._wait(self._metadata[(name, version)])

    def fetched_metadata(self) -> Dict[Tuple[PackageName, Version], PackageMetadata]:
        """Every metadata record that has been fetched successfully so far."""
        records: Dict[Tuple[PackageName, Version], PackageMetadata] = {}
        for key, future in self._metadata.items():
            if future.done() and not future.cancelled() and future.exception() is None:
                records[key] = future.result()
        return records

    # Shutdown -------------------------------------------------------------

    def cancel(self) -> None:
        logger.debug("Cancelling in-flight metadata fetches")
        for future in list(self._versions.values()) + list(self._metadata.values()):
            future.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)

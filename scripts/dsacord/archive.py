"""
Recursive extraction of dump archives.

A daily dump is a zip whose members are nested zips, gzip streams or
plain CSV files. Top-level members are extracted in parallel; each task
owns its own result list and the lists are merged once all tasks finish.
"""
import gzip
import io
import zipfile
import zlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import List, Optional

from .errors import ArchiveError
from .logger import get_logger
from .metrics import MetricsCollector


@dataclass(frozen=True)
class ExtractedMember:
    """Raw tabular bytes of one leaf member."""
    path: str
    data: bytes


# Failures that mean "this member is damaged", not "the program is broken".
# zipfile raises NotImplementedError for an unsupported compression method
# and RuntimeError for an encrypted member.
_MEMBER_ERRORS = (
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    gzip.BadGzipFile,
    zlib.error,
    EOFError,
    OSError,
    NotImplementedError,
    RuntimeError,
)


def member_kind(name: str) -> str:
    """Classify a member by extension: 'zip', 'gzip' or 'plain'."""
    suffix = PurePosixPath(name).suffix.lower()
    if suffix == ".zip":
        return "zip"
    if suffix == ".gz":
        return "gzip"
    return "plain"


class ArchiveExtractor:
    """
    Walks a zip container down to its leaf members.
    No depth limit: nested zips are opened for as long as they keep nesting.
    """

    def __init__(self, max_workers: int = 4, metrics: Optional[MetricsCollector] = None):
        self.max_workers = max(1, max_workers)
        self.metrics = metrics or MetricsCollector()
        self.logger = get_logger()

    def extract(self, data: bytes, source: str = "<memory>") -> List[ExtractedMember]:
        """
        Extract every leaf member of a zip archive.

        Args:
            data: Raw archive bytes
            source: Name used in log lines (usually the URL)

        Returns:
            Leaf members in no particular order

        Raises:
            ArchiveError: If the top-level container cannot be opened
        """
        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as e:
            raise ArchiveError(f"Cannot open archive {source}: {e}") from e

        with archive:
            infos = [info for info in archive.infolist() if not info.is_dir()]
            if not infos:
                self.logger.warning("Archive has no members", source=source)
                return []

            with ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(infos)),
                thread_name_prefix="extract"
            ) as executor:
                futures = [
                    executor.submit(self._extract_top_level, archive, info)
                    for info in infos
                ]
                parts = [future.result() for future in futures]

        members = [member for part in parts for member in part]
        self.logger.debug("Archive extracted", source=source, members=len(members))
        return members

    def _extract_top_level(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> List[ExtractedMember]:
        """Extract one top-level member; damage is logged and yields nothing."""
        results: List[ExtractedMember] = []
        try:
            with archive.open(info) as handle:
                payload = handle.read()
            self._extract_payload(info.filename, payload, results)
        except _MEMBER_ERRORS as e:
            self._skip(info.filename, e)
        return results

    def _extract_payload(self, path: str, payload: bytes, results: List[ExtractedMember]):
        kind = member_kind(path)
        if kind == "zip":
            self._extract_nested(path, payload, results)
        elif kind == "gzip":
            results.append(ExtractedMember(path, gzip.decompress(payload)))
        else:
            results.append(ExtractedMember(path, payload))

    def _extract_nested(self, path: str, payload: bytes, results: List[ExtractedMember]):
        """Walk a nested zip sequentially; a damaged child skips only that child."""
        with zipfile.ZipFile(io.BytesIO(payload)) as nested:
            for info in nested.infolist():
                if info.is_dir():
                    continue
                child_path = f"{path}/{info.filename}"
                try:
                    with nested.open(info) as handle:
                        child = handle.read()
                    self._extract_payload(child_path, child, results)
                except _MEMBER_ERRORS as e:
                    self._skip(child_path, e)

    def _skip(self, path: str, error: Exception):
        self.metrics.record_count("members_skipped", 1)
        self.logger.warning("Skipping unreadable member", member=path, error=str(error))

"""Transparent zip handling for ACMI byte streams.

Tacview saves recordings either as plain UTF-8 text (``.txt.acmi``) or as a
zip archive holding a single text member (``.zip.acmi``). The helpers here
hand the rest of the package an ordinary binary file object either way, and
fail at open time when an archive cannot be used.
"""
from __future__ import annotations

import io
import logging
import os
import shutil
import tempfile
import zipfile
from contextlib import ExitStack, contextmanager
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, TextIO, Union

from tacview.errors import ContainerError

LOGGER = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"
DEFAULT_ARCHIVE_MEMBER = "track.txt.acmi"
ZIP_SUFFIXES = (".zip.acmi", ".zip")

PathOrFile = Union[str, os.PathLike, BinaryIO]


class Compression(Enum):
    RAW = "raw"
    ZIP = "zip"


def detect_compression(path: Optional[Path] = None, head: bytes = b"") -> Compression:
    """Guess the container from the first bytes, falling back to the file name."""
    if head.startswith(ZIP_MAGIC):
        return Compression.ZIP
    if head:
        return Compression.RAW
    if path is not None and str(path).lower().endswith(ZIP_SUFFIXES):
        return Compression.ZIP
    return Compression.RAW


def is_path(source) -> bool:
    return isinstance(source, (str, os.PathLike))


def source_name(source: PathOrFile) -> str:
    """Human-readable name of a path or file object, for log messages."""
    if is_path(source):
        return str(source)
    name = getattr(source, "name", None)
    return str(name) if name is not None else "<stream>"


def _seekable(fileobj) -> bool:
    try:
        return bool(fileobj.seekable())
    except AttributeError:
        return False


def _peek(fileobj, size: int = 4) -> bytes:
    """Read the first bytes without consuming them, when the stream allows it."""
    if _seekable(fileobj):
        position = fileobj.tell()
        head = fileobj.read(size)
        fileobj.seek(position)
        return head
    if hasattr(fileobj, "peek"):
        return fileobj.peek(size)[:size]
    return b""


def _buffered(fileobj, stack: ExitStack) -> BinaryIO:
    """Wrap a stream that can neither seek nor peek so its head can be sniffed."""
    buffered = io.BufferedReader(fileobj)
    # Leave the caller's stream open when the wrapper goes away.
    stack.callback(_detach, buffered)
    return buffered


def _detach(buffered: io.BufferedReader) -> None:
    if not buffered.raw.closed:
        buffered.detach()


def _open_archive_member(fileobj, stack: ExitStack) -> BinaryIO:
    # zipfile needs random access to the central directory
    if not _seekable(fileobj):
        spool = stack.enter_context(tempfile.TemporaryFile())
        shutil.copyfileobj(fileobj, spool)
        spool.seek(0)
        fileobj = spool

    try:
        archive = zipfile.ZipFile(fileobj, "r")
    except zipfile.BadZipFile as exc:
        raise ContainerError(f"Not a valid zip archive: {exc}") from exc
    stack.enter_context(archive)

    members = [info for info in archive.infolist() if not info.is_dir()]
    if not members:
        raise ContainerError("Zip archive contains no recording")
    if len(members) > 1:
        LOGGER.warning(
            "Zip archive holds %d members, reading only %s", len(members), members[0].filename
        )

    try:
        return stack.enter_context(archive.open(members[0], "r"))
    except (NotImplementedError, RuntimeError, zipfile.BadZipFile) as exc:
        raise ContainerError(f"Cannot read {members[0].filename}: {exc}") from exc


@contextmanager
def open_source(
    source: PathOrFile, compression: Optional[Compression] = None
) -> Iterator[BinaryIO]:
    """Open a binary byte source, unwrapping zip compression if present.

    Args:
        source: Path or readable binary file object (left open if passed in)
        compression: Force RAW or ZIP; detected from content/name when None

    Yields:
        Binary file object positioned at the start of the ACMI text

    Raises:
        ContainerError: If the zip archive cannot be opened
    """
    with ExitStack() as stack:
        if is_path(source):
            path: Optional[Path] = Path(source)
            fileobj = stack.enter_context(open(path, "rb"))
        else:
            path = None
            fileobj = source

        if compression is None:
            if not _seekable(fileobj) and not hasattr(fileobj, "peek"):
                fileobj = _buffered(fileobj, stack)
            compression = detect_compression(path, _peek(fileobj))
            LOGGER.debug("Detected %s input for %s", compression.value, path or "stream")

        if compression is Compression.ZIP:
            fileobj = _open_archive_member(fileobj, stack)
        yield fileobj


@contextmanager
def open_sink(
    target: PathOrFile,
    compression: Compression = Compression.RAW,
    archive_member: str = DEFAULT_ARCHIVE_MEMBER,
) -> Iterator[BinaryIO]:
    """Open a binary byte sink, optionally writing into a one-member zip.

    The archive's central directory is written when the context exits.
    """
    with ExitStack() as stack:
        if is_path(target):
            fileobj = stack.enter_context(open(target, "wb"))
        else:
            fileobj = target

        if compression is Compression.ZIP:
            try:
                archive = zipfile.ZipFile(fileobj, "w", compression=zipfile.ZIP_DEFLATED)
            except RuntimeError as exc:
                raise ContainerError(f"Cannot create zip archive: {exc}") from exc
            stack.enter_context(archive)
            fileobj = stack.enter_context(archive.open(archive_member, "w"))
        yield fileobj


@contextmanager
def open_text_source(
    source: PathOrFile, compression: Optional[Compression] = None
) -> Iterator[TextIO]:
    """Text view of :func:`open_source`; a UTF-8 BOM is skipped."""
    with open_source(source, compression) as binary:
        text = io.TextIOWrapper(binary, encoding="utf-8-sig", errors="replace", newline="\n")
        try:
            yield text
        finally:
            text.detach()


@contextmanager
def open_text_sink(
    target: PathOrFile,
    compression: Compression = Compression.RAW,
    archive_member: str = DEFAULT_ARCHIVE_MEMBER,
) -> Iterator[TextIO]:
    """Text view of :func:`open_sink`; lines are written with ``\\n``."""
    with open_sink(target, compression, archive_member) as binary:
        text = io.TextIOWrapper(binary, encoding="utf-8", newline="\n")
        try:
            yield text
        finally:
            text.flush()
            text.detach()

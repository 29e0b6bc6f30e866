"""Tests for raw/zip container handling."""
from __future__ import annotations

import io
import tempfile
import unittest
import zipfile
from pathlib import Path

from tacview import compression as comp
from tacview.compression import Compression
from tacview.errors import ContainerError

ACMI_TEXT = "FileType=text/acmi/tacview\nFileVersion=2.2\n#0\n1,Name=F-86\n"


def make_zip(members: dict) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, text in members.items():
            archive.writestr(name, text)
    return buf.getvalue()


class Unseekable(io.BytesIO):
    """Byte stream that cannot seek, like a pipe."""

    def seekable(self) -> bool:
        return False


class TestDetectCompression(unittest.TestCase):
    """Tests for detect_compression."""

    def test_zip_magic(self) -> None:
        """Zip local header magic wins over the file name."""
        self.assertIs(Compression.ZIP, comp.detect_compression(Path("a.txt.acmi"), comp.ZIP_MAGIC))

    def test_text_head(self) -> None:
        """Text content is raw even with a zip-like name."""
        self.assertIs(Compression.RAW, comp.detect_compression(Path("a.zip.acmi"), b"File"))

    def test_name_fallback(self) -> None:
        """Without content the suffix decides."""
        self.assertIs(Compression.ZIP, comp.detect_compression(Path("a.zip.acmi")))
        self.assertIs(Compression.ZIP, comp.detect_compression(Path("A.ZIP")))
        self.assertIs(Compression.RAW, comp.detect_compression(Path("a.txt.acmi")))
        self.assertIs(Compression.RAW, comp.detect_compression())


class TestSourceName(unittest.TestCase):
    """Tests for source_name."""

    def test_path(self) -> None:
        """Paths are named by their string form."""
        self.assertEqual("flight.acmi", comp.source_name(Path("flight.acmi")))

    def test_anonymous_stream(self) -> None:
        """Streams without a name get a placeholder."""
        self.assertEqual("<stream>", comp.source_name(io.BytesIO()))


class TestOpenSource(unittest.TestCase):
    """Tests for open_source."""

    def test_raw_stream(self) -> None:
        """Raw content is passed through from the start."""
        buf = io.BytesIO(ACMI_TEXT.encode("utf-8"))
        with comp.open_source(buf) as fileobj:
            self.assertEqual(ACMI_TEXT.encode("utf-8"), fileobj.read())
        self.assertFalse(buf.closed)

    def test_zip_stream(self) -> None:
        """Zip content is detected and its member unpacked."""
        buf = io.BytesIO(make_zip({"track.txt.acmi": ACMI_TEXT}))
        with comp.open_source(buf) as fileobj:
            self.assertEqual(ACMI_TEXT.encode("utf-8"), fileobj.read())
        self.assertFalse(buf.closed)

    def test_unseekable_zip_detected(self) -> None:
        """A piped archive without a .zip name is still recognized."""
        source = Unseekable(make_zip({"track.txt.acmi": ACMI_TEXT}))
        with comp.open_source(source) as fileobj:
            self.assertEqual(ACMI_TEXT.encode("utf-8"), fileobj.read())
        self.assertFalse(source.closed)

    def test_unseekable_raw_detected(self) -> None:
        """Piped plain text is read from its first byte."""
        source = Unseekable(ACMI_TEXT.encode("utf-8"))
        with comp.open_source(source) as fileobj:
            self.assertEqual(ACMI_TEXT.encode("utf-8"), fileobj.read())
        self.assertFalse(source.closed)

    def test_unseekable_zip_is_spooled(self) -> None:
        """Archives on unseekable streams are still readable."""
        source = Unseekable(make_zip({"track.txt.acmi": ACMI_TEXT}))
        with comp.open_source(source, Compression.ZIP) as fileobj:
            self.assertEqual(ACMI_TEXT.encode("utf-8"), fileobj.read())

    def test_zip_path(self) -> None:
        """Zip files are read from disk."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "flight.zip.acmi"
            path.write_bytes(make_zip({"track.txt.acmi": ACMI_TEXT}))
            with comp.open_source(path) as fileobj:
                self.assertEqual(ACMI_TEXT.encode("utf-8"), fileobj.read())

    def test_first_member_used(self) -> None:
        """Only the first member of a multi-member archive is read."""
        buf = io.BytesIO(make_zip({"a.txt.acmi": ACMI_TEXT, "b.txt": "other"}))
        with self.assertLogs("tacview.compression", level="WARNING"):
            with comp.open_source(buf) as fileobj:
                self.assertEqual(ACMI_TEXT.encode("utf-8"), fileobj.read())

    def test_corrupt_archive(self) -> None:
        """A broken archive fails at open time."""
        buf = io.BytesIO(comp.ZIP_MAGIC + b"not really a zip")
        with self.assertRaises(ContainerError):
            with comp.open_source(buf):
                pass

    def test_empty_archive(self) -> None:
        """An archive with no members fails at open time."""
        buf = io.BytesIO(make_zip({}))
        with self.assertRaisesRegex(ContainerError, "no recording"):
            with comp.open_source(buf, Compression.ZIP):
                pass

    def test_missing_file(self) -> None:
        """I/O errors propagate unchanged."""
        with self.assertRaises(FileNotFoundError):
            with comp.open_source(Path("/nonexistent/flight.acmi")):
                pass


class TestOpenSink(unittest.TestCase):
    """Tests for open_sink."""

    def test_raw_sink(self) -> None:
        """Raw output is written directly."""
        buf = io.BytesIO()
        with comp.open_sink(buf) as fileobj:
            fileobj.write(b"#0\n")
        self.assertEqual(b"#0\n", buf.getvalue())

    def test_zip_sink(self) -> None:
        """Zip output holds one deflated member."""
        buf = io.BytesIO()
        with comp.open_sink(buf, Compression.ZIP) as fileobj:
            fileobj.write(ACMI_TEXT.encode("utf-8"))
        self.assertTrue(buf.getvalue().startswith(comp.ZIP_MAGIC))
        with zipfile.ZipFile(io.BytesIO(buf.getvalue())) as archive:
            self.assertEqual([comp.DEFAULT_ARCHIVE_MEMBER], archive.namelist())
            info = archive.getinfo(comp.DEFAULT_ARCHIVE_MEMBER)
            self.assertEqual(zipfile.ZIP_DEFLATED, info.compress_type)
            self.assertEqual(ACMI_TEXT, archive.read(info).decode("utf-8"))

    def test_custom_member_name(self) -> None:
        """The archive member name can be chosen."""
        buf = io.BytesIO()
        with comp.open_sink(buf, Compression.ZIP, "mission.txt.acmi") as fileobj:
            fileobj.write(b"x")
        with zipfile.ZipFile(io.BytesIO(buf.getvalue())) as archive:
            self.assertEqual(["mission.txt.acmi"], archive.namelist())


class TestTextLayer(unittest.TestCase):
    """Tests for open_text_source and open_text_sink."""

    def test_bom_skipped(self) -> None:
        """A UTF-8 byte order mark is not part of the text."""
        buf = io.BytesIO(b"\xef\xbb\xbf" + ACMI_TEXT.encode("utf-8"))
        with comp.open_text_source(buf) as text:
            self.assertEqual(ACMI_TEXT, text.read())
        self.assertFalse(buf.closed)

    def test_crlf_kept_for_reader(self) -> None:
        """Carriage returns are left for the line splitter."""
        buf = io.BytesIO(b"#0\r\n")
        with comp.open_text_source(buf) as text:
            self.assertEqual(["#0\r\n"], list(text))

    def test_sink_writes_utf8(self) -> None:
        """Text is encoded as UTF-8 and the caller's stream stays open."""
        buf = io.BytesIO()
        with comp.open_text_sink(buf) as text:
            text.write("0,Title=Überflug\n")
        self.assertEqual("0,Title=Überflug\n".encode("utf-8"), buf.getvalue())
        self.assertFalse(buf.closed)


if __name__ == "__main__":
    unittest.main()

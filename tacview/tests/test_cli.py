"""Tests for the tacview-acmi command-line tool."""
from __future__ import annotations

import contextlib
import io
import json
import tempfile
import unittest
import zipfile
from pathlib import Path

from tacview import cli
from tacview.reader import open_reader

RECORDING = (
    "FileType=text/acmi/tacview\n"
    "FileVersion=2.2\n"
    "0,Title=CLI test\n"
    "#0\n"
    "1,T=1|2|3000,Name=MiG-17F,Throttle2=0.5\n"
    "#1.5\n"
    "1,Throttle2=0.7\n"
    "-1\n"
)


def run(argv) -> tuple:
    """Run main() and return (exit code, stdout)."""
    out = io.StringIO()
    with contextlib.redirect_stdout(out):
        code = cli.main(argv)
    return code, out.getvalue()


class CliTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmpdir.name)
        self.acmi_path = self.tmpdir / "flight.txt.acmi"
        self.acmi_path.write_text(RECORDING, encoding="utf-8")

    def tearDown(self) -> None:
        self._tmpdir.cleanup()


class TestCreateParser(unittest.TestCase):
    """Tests for create_parser."""

    def test_subcommands(self) -> None:
        """Parser knows every subcommand."""
        parser = cli.create_parser()
        self.assertEqual("dump", parser.parse_args(["dump", "a.acmi"]).command)
        self.assertEqual("stats", parser.parse_args(["stats", "a.acmi"]).command)
        args = parser.parse_args(["convert", "a.acmi", "b.zip.acmi", "--compress"])
        self.assertEqual("convert", args.command)
        self.assertTrue(args.compress)

    def test_global_options(self) -> None:
        """Global options come before the subcommand."""
        args = cli.create_parser().parse_args(["--strict", "-v", "dump", "a.acmi"])
        self.assertTrue(args.strict)
        self.assertTrue(args.verbose)
        self.assertEqual(Path("a.acmi"), args.acmi_path)

    def test_compress_options_exclusive(self) -> None:
        """--compress and --decompress cannot be combined."""
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                cli.create_parser().parse_args(
                    ["convert", "a", "b", "--compress", "--decompress"]
                )


class TestDump(CliTestCase):
    """Tests for the dump subcommand."""

    def test_frames_listed(self) -> None:
        """Each frame gets one summary line."""
        code, output = run(["dump", str(self.acmi_path)])
        self.assertEqual(0, code)
        self.assertIn("Title=CLI test", output)
        self.assertIn("#0 updates=1 removals=0", output)
        self.assertIn("#1.5 updates=1 removals=1", output)
        self.assertIn("Took: ", output)

    def test_missing_file(self) -> None:
        """A missing input exits with 1."""
        code, _ = run(["dump", str(self.tmpdir / "missing.acmi")])
        self.assertEqual(1, code)

    def test_not_acmi(self) -> None:
        """A non-ACMI input exits with 1."""
        bad = self.tmpdir / "notes.txt"
        bad.write_text("hello\n", encoding="utf-8")
        code, _ = run(["dump", str(bad)])
        self.assertEqual(1, code)

    def test_strict_stops_on_bad_line(self) -> None:
        """With --strict a malformed line is fatal."""
        self.acmi_path.write_text(RECORDING + "garbage\n", encoding="utf-8")
        self.assertEqual(0, run(["dump", str(self.acmi_path)])[0])
        self.assertEqual(1, run(["--strict", "dump", str(self.acmi_path)])[0])


class TestStats(CliTestCase):
    """Tests for the stats subcommand."""

    def test_json_summary(self) -> None:
        """Counts and duration are printed as JSON."""
        code, output = run(["stats", str(self.acmi_path)])
        self.assertEqual(0, code)
        stats = json.loads(output)
        self.assertEqual("2.2", stats["file_version"])
        self.assertEqual("CLI test", stats["title"])
        self.assertEqual(2, stats["frames"])
        self.assertEqual(1, stats["objects"])
        self.assertEqual(1, stats["removed_objects"])
        self.assertEqual(0, stats["live_objects"])
        self.assertEqual(0, stats["errors"])
        self.assertEqual(1.5, stats["duration"])

    def test_collect_stats_counts_errors(self) -> None:
        """Skipped lines are counted."""
        self.acmi_path.write_text(RECORDING + "garbage\n", encoding="utf-8")
        stats = cli.collect_stats(self.acmi_path, cli.AcmiConfig())
        self.assertEqual(1, stats["errors"])

    def test_collect_stats_counts_tags(self) -> None:
        """Object types are counted by tag, unknown tags included."""
        self.acmi_path.write_text(
            RECORDING.replace("Name=MiG-17F", "Name=MiG-17F,Type=Air+FixedWing")
            + "2,Type=Ground+Custom\n",
            encoding="utf-8",
        )
        stats = cli.collect_stats(self.acmi_path, cli.AcmiConfig())
        self.assertEqual({"Air": 1, "Custom": 1, "FixedWing": 1, "Ground": 1}, stats["tags"])


class TestConvert(CliTestCase):
    """Tests for the convert subcommand."""

    def test_compress(self) -> None:
        """A recording can be converted to a zip archive."""
        out_path = self.tmpdir / "flight.bin"
        code, _ = run(["convert", str(self.acmi_path), str(out_path), "--compress"])
        self.assertEqual(0, code)
        self.assertTrue(zipfile.is_zipfile(out_path))

        with open_reader(self.acmi_path) as source, open_reader(out_path) as converted:
            self.assertEqual(dict(source.session.metadata), dict(converted.session.metadata))
            self.assertEqual(list(source), list(converted))

    def test_decompress_full_state(self) -> None:
        """A zip recording can be unpacked with every update in full."""
        zipped = self.tmpdir / "flight.zip.acmi"
        self.assertEqual(0, run(["convert", str(self.acmi_path), str(zipped)])[0])
        self.assertTrue(zipfile.is_zipfile(zipped))

        out_path = self.tmpdir / "full.zip.acmi"
        code, _ = run(
            ["convert", str(zipped), str(out_path), "--decompress", "--full-state"]
        )
        self.assertEqual(0, code)
        text = out_path.read_text(encoding="utf-8")
        self.assertIn("1,T=1|2|3000,Name=MiG-17F,Throttle2=0.7\n", text)

    def test_missing_input(self) -> None:
        """A missing input exits with 1."""
        code, _ = run(
            ["convert", str(self.tmpdir / "missing.acmi"), str(self.tmpdir / "out.acmi")]
        )
        self.assertEqual(1, code)

    def test_bad_config(self) -> None:
        """Invalid settings exit with 1."""
        config_path = self.tmpdir / "acmi_config.json"
        config_path.write_text(json.dumps({"kind_policy": "ignore"}), encoding="utf-8")
        code, _ = run(
            ["--config", str(config_path), "convert", str(self.acmi_path),
             str(self.tmpdir / "out.acmi")]
        )
        self.assertEqual(1, code)


if __name__ == "__main__":
    unittest.main()

import asyncio
import io
import json
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

try:
    import Indexer  # type: ignore
except ImportError:  # pragma: no cover - optional dependency missing
    Indexer = None  # type: ignore


def _run_main(argv):
    out = io.StringIO()
    with redirect_stdout(out):
        Indexer.main(argv)
    return json.loads(out.getvalue())


class OptionResolutionTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        if Indexer is None:
            raise unittest.SkipTest("Indexer dependencies unavailable")

    def _resolve(self, argv):
        return Indexer._resolve_options(Indexer.build_parser().parse_args(argv))

    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            opts = self._resolve([])
        self.assertEqual((opts.max_chunk_size, opts.min_chunk_size), (1000, 100))
        self.assertTrue(opts.preserve_context)
        self.assertTrue(opts.parse_embedded)

    def test_environment_then_flags(self):
        env = {
            "CHUNKER_MAX_CHUNK_SIZE": "500",
            "CHUNKER_MIN_CHUNK_SIZE": "20",
            "CHUNKER_PRESERVE_CONTEXT": "false",
            "CHUNKER_PARSE_EMBEDDED": "no",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            opts = self._resolve([])
            self.assertEqual((opts.max_chunk_size, opts.min_chunk_size), (500, 20))
            self.assertFalse(opts.preserve_context)
            self.assertFalse(opts.parse_embedded)
            flagged = self._resolve(["--max-chunk-size", "300"])
            self.assertEqual(flagged.max_chunk_size, 300)

    def test_invalid_environment_values_are_ignored(self):
        with mock.patch.dict(os.environ, {"CHUNKER_MAX_CHUNK_SIZE": "lots", "CHUNKER_PARSE_EMBEDDED": "maybe"}, clear=True):
            with self.assertLogs("syntax_chunker", level="WARNING"):
                opts = self._resolve([])
        self.assertEqual(opts.max_chunk_size, 1000)
        self.assertTrue(opts.parse_embedded)

    def test_timeout_help_says_best_effort(self):
        actions = {a.dest: a for a in Indexer.build_parser()._actions}
        help_text = actions["timeout"].help
        self.assertTrue(help_text.startswith("Best-effort"))
        self.assertIn("not inside a parse", help_text)

    def test_flags_disable_context_and_embedding(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            opts = self._resolve(["--no-context", "--no-embedded", "--min-chunk-size", "5"])
        self.assertFalse(opts.preserve_context)
        self.assertFalse(opts.parse_embedded)
        self.assertEqual(opts.min_chunk_size, 5)


class MainTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        if Indexer is None:
            raise unittest.SkipTest("Indexer dependencies unavailable")

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.env = mock.patch.dict(os.environ, {}, clear=True)
        self.env.start()

    def tearDown(self):
        self.env.stop()
        self._tmp.cleanup()

    def test_languages_flag(self):
        out = io.StringIO()
        with redirect_stdout(out):
            Indexer.main(["--languages"])
        languages = json.loads(out.getvalue())
        self.assertIn("python", languages)
        self.assertIn("markdown", languages)

    def test_chunks_text_and_skips_binary(self):
        notes = self.tmp / "notes.unknownext"
        notes.write_text("alpha\nbeta\n", encoding="utf-8")
        blob = self.tmp / "blob.bin"
        blob.write_bytes(b"\x00\x01\x02\x03")

        summary = _run_main([str(notes), str(blob)])
        self.assertEqual(summary["processed_files"], 1)
        self.assertEqual(summary["skipped_binary"], [str(blob)])
        self.assertFalse(summary["persisted"])
        chunks = summary["files"][0]["chunks"]
        self.assertEqual(len(chunks), 1)
        self.assertEqual(chunks[0]["content"], "alpha\nbeta\n")
        self.assertEqual((chunks[0]["startLine"], chunks[0]["endLine"]), (1, 2))
        self.assertTrue(chunks[0]["metadata"]["fallback"])
        self.assertIsNone(summary["files"][0]["language"])

    def test_missing_file_is_reported(self):
        missing = str(self.tmp / "gone.unknownext")
        summary = _run_main([missing])
        self.assertEqual(summary["processed_files"], 0)
        self.assertEqual([f["path"] for f in summary["failed"]], [missing])

    def test_timeout_falls_back_to_character_chunks(self):
        notes = self.tmp / "slow.unknownext"
        notes.write_text("one\ntwo\n", encoding="utf-8")

        async def slow_chunk(*_args, **_kwargs):
            await asyncio.sleep(5)
            return []

        with mock.patch.object(Indexer.chunker, "chunk_code_by_ast", slow_chunk):
            summary = _run_main([str(notes), "--timeout", "0.05"])
        entry = summary["files"][0]
        self.assertTrue(entry["timed_out"])
        self.assertEqual([c["content"] for c in entry["chunks"]], ["one\ntwo\n"])
        self.assertTrue(entry["chunks"][0]["metadata"]["fallback"])

    def test_db_persists_chunks(self):
        notes = self.tmp / "notes.unknownext"
        notes.write_text("alpha beta\ngamma delta\n", encoding="utf-8")
        url = f"sqlite:///{self.tmp / 'index.db'}"

        summary = _run_main([str(notes), "--db", url])
        self.assertTrue(summary["persisted"])

        from Persist import DBConfig, PersistInSqlite  # type: ignore

        store = PersistInSqlite(cfg=DBConfig.sqlite(url))
        try:
            stored = store.get_chunks(str(notes))
        finally:
            store.close()
        self.assertEqual([c.content for c in stored], ["alpha beta\ngamma delta\n"])


if __name__ == "__main__":
    unittest.main()

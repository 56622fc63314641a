from __future__ import annotations

import asyncio
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from typer.testing import CliRunner

from fastmirror.cli import app
from fastmirror.config import load_config, state_db_path
from fastmirror.models import DuplicateOption
from fastmirror.state_db import load_last_run
from tests.fakes import FakeRemote, file, folder


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.runner = CliRunner()
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.workdir = Path(tmp.name)
        previous = Path.cwd()
        os.chdir(self.workdir)
        self.addCleanup(os.chdir, previous)
        env = mock.patch.dict(os.environ, {"FASTMIRROR_TOKEN": "", "ALIST_TOKEN": ""}, clear=False)
        env.start()
        self.addCleanup(env.stop)

    def _init(self) -> None:
        result = self.runner.invoke(
            app,
            [
                "init",
                "http://fs.local/",
                "--src",
                "/src",
                "--dst",
                "/dst/",
                "--token",
                "secret-token",
                "--policy",
                "OverwriteUnconditionally",
            ],
        )
        self.assertEqual(result.exit_code, 0, result.output)

    def test_init_writes_config(self) -> None:
        self._init()
        config = load_config(self.workdir)
        self.assertEqual(config.server, "http://fs.local")
        self.assertEqual(config.dst_root, "/dst")
        self.assertEqual(config.token, "secret-token")
        self.assertEqual(config.duplicate_option, DuplicateOption.OVERWRITE_UNCONDITIONALLY)

    def test_init_rejects_non_http_server(self) -> None:
        result = self.runner.invoke(app, ["init", "fs.local", "--src", "/a", "--dst", "/b"])
        self.assertEqual(result.exit_code, 1)
        self.assertFalse((self.workdir / ".fastmirror.json").exists())

    def test_init_rejects_nested_roots(self) -> None:
        result = self.runner.invoke(
            app, ["init", "http://fs.local", "--src", "/media", "--dst", "/media/backup"]
        )
        self.assertEqual(result.exit_code, 1)
        self.assertIn("inside source", result.output)
        self.assertFalse((self.workdir / ".fastmirror.json").exists())

    def test_copy_records_run_and_failures_lists_it(self) -> None:
        self._init()
        remote = FakeRemote(
            {
                "/src": [file("a.txt"), folder("sub")],
                "/src/sub": [file("b.txt")],
                "/dst": [file("a.txt")],
            }
        )
        remote.fail_copy.add("/dst/sub")

        with mock.patch("fastmirror.session.RemoteFsClient", return_value=remote):
            result = self.runner.invoke(app, ["copy"])

        self.assertEqual(result.exit_code, 1, result.output)
        self.assertTrue(remote.closed)
        self.assertEqual(len(remote.copy_calls), 2)

        last = asyncio.run(load_last_run(state_db_path(self.workdir)))
        self.assertIsNotNone(last)
        record, jobs = last
        self.assertEqual((record.job_count, record.failure_count), (2, 1))
        self.assertEqual([job.dst_dir for job in jobs], ["/dst/sub"])

        result = self.runner.invoke(app, ["failures"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Failed: 1", result.output)

    def test_diff_does_not_copy(self) -> None:
        self._init()
        remote = FakeRemote({"/src": [file("a.txt")], "/dst": []})
        with mock.patch("fastmirror.session.RemoteFsClient", return_value=remote):
            result = self.runner.invoke(app, ["diff", "--policy", "NoOverwrite"])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(remote.copy_calls, [])
        self.assertEqual(sorted(remote.list_calls), ["/dst", "/src"])

    def test_copy_without_config_reports_missing_server(self) -> None:
        result = self.runner.invoke(app, ["copy", "--src", "/a", "--dst", "/b"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Server address is empty!!", result.output)


if __name__ == "__main__":
    unittest.main()

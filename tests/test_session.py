from __future__ import annotations

import unittest

from fastmirror.config import MirrorConfig
from fastmirror.messages import CrawlDrained
from fastmirror.models import CopyJob, DuplicateOption, FileEntry, Side
from fastmirror.session import MirrorSession, Phase
from tests.fakes import FakeRemote, file, folder


WAIT = 5.0


def _config(**overrides) -> MirrorConfig:
    values = dict(server="http://fs.local", token="t0ken", src_root="/src", dst_root="/dst")
    values.update(overrides)
    return MirrorConfig(**values)


def _tree() -> dict:
    return {
        "/src": [file("a.txt"), file("b.txt"), folder("sub")],
        "/src/sub": [file("c.txt")],
        "/dst": [file("a.txt")],
    }


class MirrorSessionTests(unittest.TestCase):
    def _session(self, remote: FakeRemote, **config_overrides) -> tuple[MirrorSession, list[str]]:
        lines: list[str] = []
        session = MirrorSession(_config(**config_overrides), client=remote, log=lines.append)
        session.start()

        def _cleanup() -> None:
            session.close()
            remote.close()

        self.addCleanup(_cleanup)
        return session, lines

    def _crawl(self, session: MirrorSession) -> None:
        self.assertTrue(session.start_diff())
        self.assertTrue(session.wait_for_crawl(timeout=WAIT))
        self.assertTrue(session.crawl_state.ready)
        self.assertIs(session.phase, Phase.CRAWLED)

    def test_diff_then_copy_with_no_overwrite(self) -> None:
        remote = FakeRemote(_tree())
        session, lines = self._session(remote)
        self._crawl(session)

        self.assertEqual(set(session.source_map), {"/src", "/src/sub"})
        self.assertEqual(set(session.destination_map), {"/dst"})

        self.assertTrue(session.start_copy())
        self.assertTrue(session.wait_for_copy(timeout=WAIT))

        report = session.last_report
        self.assertIsNotNone(report)
        self.assertEqual(report.job_count, 2)
        self.assertEqual(report.failure_count, 0)
        self.assertEqual(
            sorted(remote.copy_calls),
            [("/src", "/dst", ["b.txt"]), ("/src/sub", "/dst/sub", ["c.txt"])],
        )
        self.assertEqual(remote.mkdir_calls, ["/dst/sub"])
        self.assertTrue(any(line.endswith("NoOverwrite /dst/a.txt") for line in lines))
        self.assertTrue(any("Copy finished: 2 job(s), 0 failed" in line for line in lines))

    def test_copy_before_crawl_is_rejected(self) -> None:
        remote = FakeRemote(_tree())
        session, lines = self._session(remote)

        self.assertFalse(session.start_copy())
        self.assertIn("Copy rejected", lines[-1])
        self.assertEqual(remote.copy_calls, [])
        self.assertIsNone(session.last_report)

    def test_missing_server_or_token_aborts_before_crawl(self) -> None:
        for overrides, message in (
            ({"server": ""}, "Server address is empty!!"),
            ({"token": ""}, "Token is empty!!"),
            ({"server": "fs.local"}, "must start with http"),
        ):
            with self.subTest(message=message):
                remote = FakeRemote(_tree())
                session, lines = self._session(remote, **overrides)
                self.assertFalse(session.start_diff())
                self.assertIn(message, lines[-1])
                self.assertIs(session.phase, Phase.IDLE)
                self.assertEqual(remote.list_calls, [])

    def test_second_diff_while_crawling_is_ignored(self) -> None:
        remote = FakeRemote(_tree())
        session, lines = self._session(remote)
        self.assertTrue(session.start_diff())
        self.assertFalse(session.start_diff())
        self.assertIn("Busy", lines[-1])
        self.assertTrue(session.wait_for_crawl(timeout=WAIT))

    def test_failed_copy_jobs_are_reported_not_retried(self) -> None:
        remote = FakeRemote(_tree())
        remote.fail_copy.add("/dst/sub")
        reports = []
        session = MirrorSession(_config(), client=remote, on_report=reports.append)
        session.start()
        self.addCleanup(remote.close)
        self.addCleanup(session.close)

        self._crawl(session)
        self.assertTrue(session.start_copy())
        self.assertTrue(session.wait_for_copy(timeout=WAIT))

        self.assertEqual(len(reports), 1)
        self.assertEqual(reports[0].failure_count, 1)
        self.assertEqual(session.failures, [CopyJob("/src/sub", "/dst/sub", (FileEntry.from_payload(file("c.txt")),))])
        self.assertEqual(len(remote.copy_calls), 2)

    def test_failed_mkdir_fails_the_job(self) -> None:
        remote = FakeRemote(_tree())
        remote.fail_mkdir.add("/dst/sub")
        session, _ = self._session(remote)
        self._crawl(session)
        session.start_copy()
        self.assertTrue(session.wait_for_copy(timeout=WAIT))
        self.assertEqual([job.dst_dir for job in session.failures], ["/dst/sub"])
        self.assertEqual(remote.copy_calls, [("/src", "/dst", ["b.txt"])])

    def test_mkdir_can_be_disabled(self) -> None:
        remote = FakeRemote(_tree())
        session, _ = self._session(remote, create_missing_dirs=False)
        self._crawl(session)
        session.start_copy()
        self.assertTrue(session.wait_for_copy(timeout=WAIT))
        self.assertEqual(remote.mkdir_calls, [])
        self.assertEqual(len(remote.copy_calls), 2)

    def test_missing_destination_root_copies_everything(self) -> None:
        tree = _tree()
        del tree["/dst"]
        remote = FakeRemote(tree)
        session, lines = self._session(remote)
        self._crawl(session)

        self.assertEqual(session.destination_map, {})
        self.assertTrue(any("List /dst failed" in line for line in lines))
        session.start_copy()
        self.assertTrue(session.wait_for_copy(timeout=WAIT))
        self.assertEqual(
            sorted(remote.copy_calls),
            [("/src", "/dst", ["a.txt", "b.txt"]), ("/src/sub", "/dst/sub", ["c.txt"])],
        )

    def test_nothing_to_copy_reports_immediately(self) -> None:
        remote = FakeRemote({"/src": [file("a.txt")], "/dst": [file("a.txt")]})
        session, lines = self._session(remote)
        self._crawl(session)

        self.assertTrue(session.start_copy())
        self.assertIs(session.phase, Phase.CRAWLED)
        self.assertEqual(session.last_report.job_count, 0)
        self.assertTrue(any("Nothing to copy" in line for line in lines))

    def test_unconditional_policy_recopies_existing_files(self) -> None:
        remote = FakeRemote(_tree())
        session, _ = self._session(remote, duplicate_option=DuplicateOption.OVERWRITE_UNCONDITIONALLY)
        self._crawl(session)
        session.start_copy()
        self.assertTrue(session.wait_for_copy(timeout=WAIT))
        self.assertIn(("/src", "/dst", ["a.txt", "b.txt"]), remote.copy_calls)

    def test_log_lines_are_timestamped(self) -> None:
        remote = FakeRemote(_tree())
        session, lines = self._session(remote, server="")
        session.start_diff()
        self.assertRegex(lines[-1], r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} Server address is empty!!$")

    def test_stale_drained_notice_is_ignored(self) -> None:
        remote = FakeRemote(_tree())
        session, lines = self._session(remote)
        self._crawl(session)

        session._inbox.put(CrawlDrained(Side.SOURCE))
        session.process_pending()

        self.assertEqual(sum("Source crawl finished" in line for line in lines), 1)
        self.assertEqual(sum(line.endswith("Both crawls finished") for line in lines), 1)
        self.assertIs(session.phase, Phase.CRAWLED)

    def test_close_joins_worker_threads(self) -> None:
        remote = FakeRemote(_tree())
        session = MirrorSession(_config(), client=remote)
        self.addCleanup(remote.close)
        session.start()
        self._crawl(session)
        session.close()

        workers = [session.crawler(side).worker for side in Side] + [session.dispatcher.worker]
        self.assertFalse(any(worker.is_running for worker in workers))
        # Injected clients stay open for their owner.
        self.assertFalse(remote.closed)
        self.assertIs(session.phase, Phase.IDLE)


if __name__ == "__main__":
    unittest.main()

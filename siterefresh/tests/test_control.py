from __future__ import annotations

import base64
import random
import tempfile
import threading
import unittest
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

from siterefresh.api_client import RemoteServiceError
from siterefresh.banners import BannerSpec, BannerUpdater
from siterefresh.control import BannerControl, SchedulerControl
from siterefresh.models import TaskOutcome
from siterefresh.scheduler import Scheduler


class _Task:
    name = "contentGeneration"

    def __init__(self, release: threading.Event | None = None, entered: threading.Event | None = None) -> None:
        self._release = release
        self._entered = entered

    def run(self) -> TaskOutcome:
        if self._entered is not None:
            self._entered.set()
        if self._release is not None:
            self._release.wait(5)
        return TaskOutcome.ok()


NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

PNG_B64 = base64.b64encode(b"\x89PNG" + b"\x00" * 200).decode("ascii")
PNG_BYTES = base64.b64decode(PNG_B64)


class TestSchedulerControl(unittest.TestCase):
    def test_trigger_accepted_then_conflict(self) -> None:
        release, entered = threading.Event(), threading.Event()
        sched = Scheduler(tasks=[_Task(release, entered)], clock=lambda: NOW)
        control = SchedulerControl(sched, clock=lambda: NOW)
        try:
            first = control.trigger_run()
            self.assertEqual(first.status_code, 202)
            self.assertTrue(first.ok)
            self.assertEqual(first.body["nextCheckTime"], "2024-01-01T12:01:00Z")
            self.assertTrue(entered.wait(5))

            second = control.trigger_run()
            self.assertEqual(second.status_code, 409)
            self.assertFalse(second.body["success"])
        finally:
            release.set()
            sched.shutdown()

    def test_start_with_invalid_schedule(self) -> None:
        control = SchedulerControl(Scheduler(tasks=[]))
        resp = control.start("bogus")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("error", resp.body)

    def test_start_and_stop(self) -> None:
        sched = Scheduler(tasks=[])
        control = SchedulerControl(sched)
        try:
            resp = control.start("0 6 * * *")
            self.assertEqual(resp.status_code, 200)
            self.assertEqual(resp.body["schedule"], "0 6 * * *")
            self.assertTrue(resp.body["nextRun"].endswith("Z"))
        finally:
            stopped = control.stop()
        self.assertEqual(stopped.status_code, 200)
        self.assertFalse(sched.is_started)

    def test_status_includes_elapsed_fields(self) -> None:
        sched = Scheduler(tasks=[_Task()], clock=lambda: NOW)
        sched.run_updates()
        later = NOW + timedelta(hours=1, minutes=2, seconds=3)
        resp = SchedulerControl(sched, clock=lambda: later).get_status()

        self.assertEqual(resp.status_code, 200)
        status = resp.body["status"]
        self.assertEqual(status["lastRun"], "2024-01-01T12:00:00Z")
        self.assertEqual(status["nextRun"], "2024-01-02T00:00:00Z")
        self.assertFalse(status["isRunning"])
        self.assertTrue(status["lastStatus"]["contentGeneration"]["success"])
        self.assertEqual(status["timeSinceLastRun"], {"milliseconds": 3723000, "formatted": "1h 2m 3s"})
        self.assertEqual(status["timeUntilNextRun"]["formatted"], "10h 57m 57s")

    def test_status_before_any_run(self) -> None:
        status = SchedulerControl(Scheduler(tasks=[])).get_status().body["status"]
        self.assertIsNone(status["lastRun"])
        self.assertNotIn("timeSinceLastRun", status)
        self.assertNotIn("timeUntilNextRun", status)

class TestBannerControl(unittest.TestCase):
    SPECS = (
        BannerSpec("news", "news-hero-", count=1, variants=1),
        BannerSpec("cnc", "cnc-", count=1, variants=1),
    )

    def _control(self, td: str, client: MagicMock) -> BannerControl:
        updater = BannerUpdater(client, banner_dir=Path(td), sleep=lambda _s: None)
        return BannerControl(updater, specs=self.SPECS, rng=random.Random(0))

    def test_all_slots_updated_is_200(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            client = MagicMock()
            client.generate_image.return_value = PNG_B64
            resp = self._control(td, client).update_banners()

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.body["success"])
        self.assertEqual(resp.body["message"], "2 banner(s) updated, 0 failed")
        self.assertEqual([e["slot"] for e in resp.body["successful"]], ["news-hero-1", "cnc-1"])
        self.assertEqual(resp.body["failed"], [])

    def test_partial_failure_is_207(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            client = MagicMock()
            client.generate_image.side_effect = [PNG_B64, RemoteServiceError("bad request", status_code=400)]
            resp = self._control(td, client).update_banners()

        self.assertEqual(resp.status_code, 207)
        self.assertFalse(resp.body["success"])
        self.assertEqual(resp.body["message"], "1 banner(s) updated, 1 failed")
        self.assertEqual(resp.body["successful"][0]["fileName"], "news-hero-1-v1.png")
        failed = resp.body["failed"][0]
        self.assertEqual(failed["slot"], "cnc-1")
        self.assertEqual(failed["pageType"], "cnc")
        self.assertEqual(failed["status"], "failed")

    def test_page_type_filter(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            client = MagicMock()
            client.generate_image.return_value = PNG_B64
            resp = self._control(td, client).update_banners(["cnc"])

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(client.generate_image.call_count, 1)
        self.assertEqual([e["slot"] for e in resp.body["successful"]], ["cnc-1"])

    def test_unknown_page_type_is_400(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            client = MagicMock()
            resp = self._control(td, client).update_banners(["cnc", "blog"])

        self.assertEqual(resp.status_code, 400)
        self.assertIn("blog", resp.body["message"])
        client.generate_image.assert_not_called()

    def test_status_and_config(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            (Path(td) / "cnc-1-v1.png").write_bytes(PNG_BYTES)
            (Path(td) / "backup").mkdir()
            control = self._control(td, MagicMock())
            status = control.get_status()
            config = control.get_config()

        self.assertEqual(status.status_code, 200)
        self.assertEqual(status.body["status"]["totalFiles"], 1)
        self.assertEqual(status.body["status"]["files"][0]["size"], len(PNG_BYTES))
        self.assertEqual(config.status_code, 200)
        self.assertEqual(
            config.body["config"],
            {
                "news": {"prefix": "news-hero-", "count": 1, "variants": 1},
                "cnc": {"prefix": "cnc-", "count": 1, "variants": 1},
            },
        )



if __name__ == "__main__":
    unittest.main()

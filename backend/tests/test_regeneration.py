import threading
import unittest
from datetime import date, datetime

from regeneration import RegenerationQueue, RegenerationResult, regenerate_schedule


class FakeStore:
    """In-memory stand-in for PlannerStore."""

    def __init__(self, week_config=None, subjects=None, fail_on_write=False):
        self.week_config = week_config
        self.subjects = subjects or []
        self.fail_on_write = fail_on_write
        self.priorities = {}
        self.allocations = {}
        self.blocks = None
        self.week_start_date = None
        self.replace_calls = 0

    def get_week_config(self, user_id):
        return self.week_config

    def get_subjects(self, user_id):
        return [dict(s) for s in self.subjects]

    def save_priority(self, subject_id, priority_score):
        self.priorities[subject_id] = priority_score

    def save_allocations(self, allocations):
        self.allocations.update(allocations)

    def replace_schedule(self, user_id, blocks, week_start_date=None):
        if self.fail_on_write:
            raise RuntimeError("database is down")
        self.replace_calls += 1
        self.blocks = list(blocks)
        self.week_start_date = week_start_date
        return len(blocks)


class TestRegenerateSchedule(unittest.TestCase):

    def setUp(self):
        self.now = datetime(2026, 1, 6)
        self.week_config = {
            "total_available_hours": 4,
            "week_start_date": date(2026, 1, 5),
            "free_time_blocks": [{"day": "Monday", "start_time": "09:00", "end_time": "12:00"}],
        }
        self.subjects = [
            {"id": 1, "name": "Biology", "difficulty": 1,
             "start_date": date(2026, 1, 1), "exam_date": date(2026, 1, 11), "priority_score": 0},
            {"id": 2, "name": "Algebra", "difficulty": 5,
             "start_date": date(2026, 1, 1), "exam_date": date(2026, 1, 11), "priority_score": 0},
        ]

    def test_skips_without_week_config(self):
        store = FakeStore(week_config=None, subjects=self.subjects)
        result = regenerate_schedule(store, 7, "subject_added", self.now)

        self.assertTrue(result.skipped)
        self.assertFalse(result.success)
        self.assertEqual(store.replace_calls, 0)
        self.assertEqual(store.priorities, {})

    def test_skips_without_free_time(self):
        store = FakeStore(week_config=dict(self.week_config, free_time_blocks=[]), subjects=self.subjects)
        result = regenerate_schedule(store, 7, "availability_changed", self.now)
        self.assertTrue(result.skipped)
        self.assertEqual(store.replace_calls, 0)

    def test_skips_without_subjects(self):
        store = FakeStore(week_config=self.week_config, subjects=[])
        result = regenerate_schedule(store, 7, "subject_deleted", self.now)
        self.assertTrue(result.skipped)
        self.assertEqual(result.message, "No subjects found")
        self.assertIsNone(store.blocks)

    def test_full_run_replaces_blocks(self):
        store = FakeStore(week_config=self.week_config, subjects=self.subjects)
        result = regenerate_schedule(store, 7, "subject_updated", self.now)

        self.assertTrue(result.success)
        self.assertFalse(result.skipped)
        self.assertEqual(result.blocks_created, 2)
        self.assertAlmostEqual(store.priorities[2], 0.75)
        self.assertAlmostEqual(store.priorities[1], 0.35)
        self.assertAlmostEqual(sum(store.allocations.values()), 4)
        self.assertEqual(store.week_start_date, date(2026, 1, 5))

        first, second = store.blocks
        self.assertEqual((first["subject_id"], first["start_time"]), (2, "09:00"))
        self.assertEqual((second["subject_id"], second["end_time"]), (1, "12:00"))
        self.assertEqual(first["end_time"], second["start_time"])

    def test_failure_is_reported_not_raised(self):
        store = FakeStore(week_config=self.week_config, subjects=self.subjects, fail_on_write=True)
        result = regenerate_schedule(store, 7, "subject_added", self.now)

        self.assertFalse(result.success)
        self.assertFalse(result.skipped)
        self.assertEqual(result.message, "database is down")

    def test_result_dict(self):
        result = RegenerationResult(success=True, message="Schedule regenerated", blocks_created=3)
        self.assertEqual(result.to_dict(), {
            "success": True, "skipped": False, "message": "Schedule regenerated", "blocks_created": 3,
        })


class TestRegenerationQueue(unittest.TestCase):

    def test_inline_mode_runs_immediately(self):
        calls = []
        queue = RegenerationQueue(lambda uid, reason: calls.append((uid, reason)), run_async=False)

        self.assertTrue(queue.submit(1, "subject_added"))
        self.assertEqual(calls, [(1, "subject_added")])
        self.assertFalse(queue.is_active(1))

    def test_non_trigger_events_are_ignored(self):
        calls = []
        queue = RegenerationQueue(lambda uid, reason: calls.append(reason), run_async=False)
        self.assertFalse(queue.submit(1, "material_uploaded"))
        self.assertEqual(calls, [])

    def test_overlapping_requests_coalesce(self):
        release = threading.Event()
        calls = []

        def runner(user_id, reason):
            calls.append((user_id, reason))
            if len(calls) == 1:
                release.wait(5)

        queue = RegenerationQueue(runner, run_async=True)
        queue.submit(1, "subject_added")
        queue.submit(1, "subject_updated")
        queue.submit(1, "availability_changed")
        release.set()
        queue.wait(1, timeout=5)

        self.assertEqual(calls, [(1, "subject_added"), (1, "availability_changed")])
        self.assertFalse(queue.is_active(1))

    def test_runner_crash_does_not_wedge_user(self):
        calls = []

        def runner(user_id, reason):
            calls.append(reason)
            raise RuntimeError("boom")

        queue = RegenerationQueue(runner, run_async=False)
        queue.submit(3, "subject_added")
        queue.submit(3, "subject_deleted")
        self.assertEqual(calls, ["subject_added", "subject_deleted"])
        self.assertFalse(queue.is_active(3))

    def test_finished_workers_are_forgotten(self):
        queue = RegenerationQueue(lambda uid, reason: None, run_async=True)
        queue.submit(1, "subject_added")
        queue.wait(1, timeout=5)
        self.assertFalse(queue.is_active(1))
        self.assertEqual(queue._workers, {})

    def test_run_now_returns_runner_result(self):
        queue = RegenerationQueue(lambda uid, reason: (uid, reason), run_async=False)
        self.assertEqual(queue.run_now(4, "manual"), (4, "manual"))
        self.assertFalse(queue.is_active(4))

    def test_run_now_waits_for_background_run(self):
        started = threading.Event()
        release = threading.Event()
        calls = []
        running = []
        overlaps = []

        def runner(user_id, reason):
            if running:
                overlaps.append(reason)
            running.append(reason)
            calls.append(reason)
            if reason == "subject_added":
                started.set()
                release.wait(5)
            running.remove(reason)
            return reason.upper()

        queue = RegenerationQueue(runner, run_async=True)
        queue.submit(1, "subject_added")
        self.assertTrue(started.wait(5))

        results = []
        caller = threading.Thread(target=lambda: results.append(queue.run_now(1, "manual")))
        caller.start()
        caller.join(0.2)
        self.assertEqual(calls, ["subject_added"])

        release.set()
        caller.join(5)
        self.assertEqual(calls, ["subject_added", "manual"])
        self.assertEqual(results, ["MANUAL"])
        self.assertEqual(overlaps, [])
        self.assertFalse(queue.is_active(1))

    def test_submit_during_run_now_runs_afterwards(self):
        calls = []

        def runner(user_id, reason):
            calls.append(reason)
            if reason == "manual":
                queue.submit(user_id, "subject_updated")

        queue = RegenerationQueue(runner, run_async=False)
        queue.run_now(2, "manual")
        self.assertEqual(calls, ["manual", "subject_updated"])
        self.assertFalse(queue.is_active(2))


if __name__ == "__main__":
    unittest.main()

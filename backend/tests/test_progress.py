"""Tests for phase progress and job record transitions."""

import shutil
import tempfile
import unittest

from app.core.exceptions import JobCancelledError, NotFoundError
from app.services.job_store import JobStore
from app.services.progress import JobProgressTracker, progress_for
from app.services.storage import RecordStore


class TestProgressFor(unittest.TestCase):

    def test_phase_boundaries(self):
        self.assertEqual(progress_for("initializing", 0.0), 0)
        self.assertEqual(progress_for("initializing", 1.0), 10)
        self.assertEqual(progress_for("batch_mapping", 0.0), 10)
        self.assertEqual(progress_for("batch_mapping", 1.0), 55)
        self.assertEqual(progress_for("assigning", 0.5), 75)
        self.assertEqual(progress_for("assigning", 1.0), 95)
        self.assertEqual(progress_for("finalizing", 1.0), 100)

    def test_fraction_is_clamped(self):
        self.assertEqual(progress_for("assigning", 3.0), 95)
        self.assertEqual(progress_for("assigning", -1.0), 55)


class TestJobProgress(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.jobs = JobStore(RecordStore(self.tmp))
        self.jobs.create("job-1")

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_created_job_is_queued(self):
        job = self.jobs.require("job-1")
        self.assertEqual(job.status, "queued")
        self.assertEqual(job.progress, 0)
        self.assertIsNone(job.result_id)

    def test_missing_job_raises(self):
        with self.assertRaises(NotFoundError):
            self.jobs.require("nope")

    def test_tracker_never_goes_backwards(self):
        tracker = JobProgressTracker("job-1", self.jobs)
        tracker.start()
        tracker.report("assigning", 0.5, "half way")
        tracker.report("batch_mapping", 1.0, "late batch report")
        self.assertEqual(tracker.percent, 75)
        self.assertEqual(self.jobs.require("job-1").progress, 75)
        self.assertEqual(self.jobs.require("job-1").message, "late batch report")

    def test_store_progress_never_decreases(self):
        self.jobs.update("job-1", progress=40)
        self.jobs.update("job-1", progress=20)
        self.assertEqual(self.jobs.require("job-1").progress, 40)

    def test_complete_sets_result_and_freezes(self):
        tracker = JobProgressTracker("job-1", self.jobs)
        tracker.start()
        tracker.complete("analysis-1")
        job = self.jobs.require("job-1")
        self.assertEqual(job.status, "completed")
        self.assertEqual(job.progress, 100)
        self.assertEqual(job.result_id, "analysis-1")

        tracker.fail("too late")
        self.jobs.update("job-1", status="processing", progress=10)
        job = self.jobs.require("job-1")
        self.assertEqual(job.status, "completed")
        self.assertEqual(job.progress, 100)

    def test_failed_job_keeps_message(self):
        tracker = JobProgressTracker("job-1", self.jobs)
        tracker.start()
        tracker.fail("Taxonomy is empty")
        job = self.jobs.require("job-1")
        self.assertEqual(job.status, "failed")
        self.assertEqual(job.message, "Taxonomy is empty")

    def test_cancel_queued_job(self):
        job = self.jobs.request_cancel("job-1")
        self.assertEqual(job.status, "cancelled")
        self.assertTrue(job.cancel_requested)
        with self.assertRaises(JobCancelledError):
            JobProgressTracker("job-1", self.jobs).check_cancelled()

    def test_cancel_running_job_is_cooperative(self):
        self.jobs.update("job-1", status="processing")
        job = self.jobs.request_cancel("job-1")
        self.assertEqual(job.status, "processing")
        self.assertTrue(self.jobs.is_cancel_requested("job-1"))

    def test_tracker_without_store(self):
        tracker = JobProgressTracker("local")
        tracker.check_cancelled()
        self.assertEqual(tracker.report("finalizing", 0.0, "saving"), 95)


if __name__ == "__main__":
    unittest.main()

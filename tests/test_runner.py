import asyncio
import unittest

from newsimpact.errors import PipelineAlreadyRunningError
from newsimpact.ingestion.article_types import RunSummary
from newsimpact.pipeline.runner import RunLock, build_pipeline, is_pipeline_running, run_pipeline_with_lock
from newsimpact.pipeline.config import PipelineConfig
from newsimpact.pipeline.scheduler import JOB_ID, PipelineScheduler


class TestRunLock(unittest.IsolatedAsyncioTestCase):
    async def test_lock_released_after_run(self):
        lock = RunLock()

        async def run():
            self.assertTrue(is_pipeline_running(lock))
            return RunSummary(run_id="r1", ingested=3)

        summary = await run_pipeline_with_lock(run, lock=lock)
        self.assertEqual(summary.ingested, 3)
        self.assertFalse(is_pipeline_running(lock))

    async def test_second_trigger_rejected_while_running(self):
        lock = RunLock()
        gate = asyncio.Event()
        first_summary = RunSummary(run_id="first")

        async def slow_run():
            await gate.wait()
            first_summary.ai_ok = 2
            return first_summary

        first = asyncio.create_task(run_pipeline_with_lock(slow_run, lock=lock))
        await asyncio.sleep(0)
        self.assertTrue(is_pipeline_running(lock))

        calls = []

        async def other_run():
            calls.append(1)
            return RunSummary(run_id="second")

        with self.assertRaises(PipelineAlreadyRunningError) as ctx:
            await run_pipeline_with_lock(other_run, lock=lock)
        self.assertEqual(str(ctx.exception), "Pipeline run already in progress")
        self.assertEqual(calls, [])
        self.assertTrue(is_pipeline_running(lock))

        gate.set()
        summary = await first
        self.assertIs(summary, first_summary)
        self.assertEqual(summary.ai_ok, 2)
        self.assertFalse(is_pipeline_running(lock))

    async def test_lock_released_when_run_raises(self):
        lock = RunLock()

        async def boom():
            raise ConnectionError("state store down")

        with self.assertRaises(ConnectionError):
            await run_pipeline_with_lock(boom, lock=lock)
        self.assertFalse(lock.held)

    def test_build_requires_news_api_key(self):
        with self.assertRaises(ValueError):
            build_pipeline(PipelineConfig(massive_api_key=""))


class TestPipelineScheduler(unittest.IsolatedAsyncioTestCase):
    async def test_tick_swallows_already_running(self):
        async def run():
            raise PipelineAlreadyRunningError()

        scheduler = PipelineScheduler("0 * * * *", run)
        self.assertIsNone(await scheduler.tick())

    async def test_tick_logs_and_swallows_failures(self):
        async def run():
            raise RuntimeError("provider outage")

        scheduler = PipelineScheduler("0 * * * *", run)
        with self.assertLogs("newsimpact.pipeline.scheduler", level="ERROR"):
            self.assertIsNone(await scheduler.tick())

    async def test_tick_returns_summary(self):
        async def run():
            return RunSummary(run_id="r", ai_ok=1)

        summary = await PipelineScheduler("0 * * * *", run).tick()
        self.assertEqual(summary.ai_ok, 1)

    async def test_disabled_scheduler_does_not_start(self):
        async def run():
            return RunSummary(run_id="r")

        scheduler = PipelineScheduler("0 * * * *", run, enabled=False)
        self.assertFalse(scheduler.start())
        self.assertFalse(scheduler.running)

    async def test_start_registers_cron_job(self):
        async def run():
            return RunSummary(run_id="r")

        scheduler = PipelineScheduler("*/15 * * * *", run)
        try:
            self.assertTrue(scheduler.start())
            self.assertTrue(scheduler.running)
            job = scheduler._scheduler.get_job(JOB_ID)
            self.assertIsNotNone(job)
            self.assertEqual(job.max_instances, 1)
        finally:
            scheduler.stop()
        self.assertFalse(scheduler.running)


if __name__ == "__main__":
    unittest.main()

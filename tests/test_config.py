import os
import unittest
from unittest import mock

from newsimpact.pipeline.config import PipelineConfig


class TestPipelineConfig(unittest.TestCase):
    def test_defaults_are_valid(self):
        config = PipelineConfig()
        config._validate()
        self.assertEqual(config.extract_concurrency, 4)
        self.assertEqual(config.extract_timeout_ms, 5000)
        self.assertEqual(config.min_word_count, 200)
        self.assertEqual(config.cron_schedule, "0 * * * *")

    def test_retry_policy_in_seconds(self):
        policy = PipelineConfig(retry_attempts=5, retry_base_delay_ms=300, retry_max_delay_ms=3000).retry_policy
        self.assertEqual(policy.attempts, 5)
        self.assertAlmostEqual(policy.base_delay, 0.3)
        self.assertAlmostEqual(policy.max_delay, 3.0)

    @mock.patch.dict(
        os.environ,
        {
            "PG_DSN": "dbname=test",
            "MASSIVE_API_KEY": "mk",
            "PIPELINE_EXTRACT_CONCURRENCY": "8",
            "PIPELINE_CRON_SCHEDULE": "*/30 * * * *",
            "PIPELINE_CRON_ENABLED": "false",
            "PIPELINE_PROMPT_VERSION": "v2",
        },
    )
    def test_from_env(self):
        config = PipelineConfig.from_env(dotenv_path=os.devnull)
        self.assertEqual(config.pg_dsn, "dbname=test")
        self.assertEqual(config.massive_api_key, "mk")
        self.assertEqual(config.extract_concurrency, 8)
        self.assertEqual(config.cron_schedule, "*/30 * * * *")
        self.assertFalse(config.cron_enabled)
        self.assertEqual(config.prompt_version, "v2")

    @mock.patch.dict(os.environ, {"PIPELINE_AI_CONCURRENCY": "lots", "PIPELINE_EXTRACT_TIMEOUT_MS": "60000"})
    def test_errors_are_collected(self):
        with self.assertRaises(ValueError) as ctx:
            PipelineConfig.from_env(dotenv_path=os.devnull)
        msg = str(ctx.exception)
        self.assertIn("PIPELINE_AI_CONCURRENCY must be an integer", msg)
        self.assertIn("PIPELINE_EXTRACT_TIMEOUT_MS", msg)

    def test_invalid_crontab_rejected(self):
        with self.assertRaises(ValueError) as ctx:
            PipelineConfig(cron_schedule="every hour")._validate()
        self.assertIn("PIPELINE_CRON_SCHEDULE", str(ctx.exception))

    def test_invalid_crontab_ignored_when_disabled(self):
        PipelineConfig(cron_schedule="every hour", cron_enabled=False)._validate()

    def test_lookback_range(self):
        with self.assertRaises(ValueError):
            PipelineConfig(initial_lookback_hours=0)._validate()
        with self.assertRaises(ValueError):
            PipelineConfig(initial_lookback_hours=200)._validate()


if __name__ == "__main__":
    unittest.main()

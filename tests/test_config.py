from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from github_portfolio.config import AppConfig, load_config


class ConfigTests(unittest.TestCase):
    def test_load_default_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = load_config(Path(tmp) / "missing.yaml")
        self.assertIsInstance(config, AppConfig)
        self.assertEqual(config.github.token_env, "GITHUB_TOKEN")
        self.assertEqual(config.fetch.max_concurrency, 6)
        self.assertEqual(config.metrics.monthly_buckets, "year_month")
        self.assertEqual(config.metrics.calendar_days, 90)
        self.assertEqual(config.llm.provider, "openai")
        self.assertTrue(config.store.enabled)

    def test_load_custom_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config_file = Path(tmp) / "settings.yaml"
            config_file.write_text(
                """
                github:
                  api_root: https://github.example.com/api/v3/
                  token_env: GHE_TOKEN
                fetch:
                  commit_repo_limit: 5
                  max_concurrency: 0
                metrics:
                  monthly_buckets: month_of_year
                  calendar_days: 30
                llm:
                  provider: openai
                  model: gpt-4o
                  temperature: 0.5
                  max_output_tokens: 800
                  api_key_env: ALT_KEY
                output:
                  directory: custom_reports
                  show_repo_tables: false
                store:
                  enabled: false
                  directory: snapshots
                """,
                encoding="utf-8",
            )

            config = load_config(config_file)

        self.assertEqual(config.github.api_root, "https://github.example.com/api/v3")
        self.assertEqual(config.github.token_env, "GHE_TOKEN")
        self.assertEqual(config.fetch.commit_repo_limit, 5)
        self.assertEqual(config.fetch.max_concurrency, 1)
        self.assertEqual(config.metrics.monthly_buckets, "month_of_year")
        self.assertEqual(config.metrics.calendar_days, 30)
        self.assertEqual(config.llm.model, "gpt-4o")
        self.assertEqual(config.llm.api_key_env, "ALT_KEY")
        self.assertEqual(config.output.directory, Path("custom_reports"))
        self.assertFalse(config.output.show_repo_tables)
        self.assertFalse(config.store.enabled)
        self.assertEqual(config.store.directory, Path("snapshots"))

    def test_unknown_bucket_mode_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config_file = Path(tmp) / "settings.yaml"
            config_file.write_text("metrics:\n  monthly_buckets: weekly\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_config(config_file)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

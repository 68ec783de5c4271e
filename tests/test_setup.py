"""Tests for scheduler construction from settings."""

import pytest

from changereel.core.config import Settings
from changereel.jobs.scheduler import DEVELOPMENT_CONFIG, PRODUCTION_CONFIG
from changereel.jobs.setup import build_scheduler, scheduler_config_for
from changereel.jobs.worker import start_health_server
from changereel.llm.errors import LLMProviderError
from changereel.models.job import JobType


def make_settings(**overrides) -> Settings:
    fields = {
        "llm_provider": "openai",
        "openai_api_key": "sk-test",
        "resend_api_key": "",
        "job_config_preset": "",
    }
    return Settings(**{**fields, **overrides})


class TestSchedulerConfigFor:
    def test_presets(self):
        assert scheduler_config_for(make_settings(job_config_preset="production")) == PRODUCTION_CONFIG
        assert scheduler_config_for(make_settings(job_config_preset="Development")) == DEVELOPMENT_CONFIG

    def test_settings_knobs(self):
        config = scheduler_config_for(make_settings(job_max_concurrent=7, job_timeout_ms=1000))

        assert config.max_concurrent_jobs == 7
        assert config.job_timeout_ms == 1000


class TestBuildScheduler:
    async def test_without_email_key(self, store, commit_repo):
        runtime = build_scheduler(make_settings(), store, commit_repo, start_cache_cleanup=False)

        try:
            handlers = runtime.scheduler.handlers
            assert JobType.FETCH_DIFF in handlers
            assert JobType.GENERATE_SUMMARY in handlers
            assert JobType.SEND_EMAIL not in handlers
            assert runtime.email_client is None
        finally:
            await runtime.aclose()

    async def test_with_email_key(self, store, commit_repo):
        runtime = build_scheduler(
            make_settings(resend_api_key="re_test"), store, commit_repo, start_cache_cleanup=False
        )

        try:
            assert len(runtime.scheduler.handlers) == 3
        finally:
            await runtime.aclose()

    def test_missing_llm_key(self, store, commit_repo):
        with pytest.raises(LLMProviderError):
            build_scheduler(
                make_settings(openai_api_key=""), store, commit_repo, start_cache_cleanup=False
            )


async def test_health_server_disabled_without_port(scheduler):
    assert await start_health_server(None, scheduler) is None

"""Explicit construction of the scheduler and everything its handlers use."""

from typing import Optional

from changereel.core.config import Settings
from changereel.core.logging import get_logger
from changereel.db.commits import CommitRepository
from changereel.email.client import EmailClient
from changereel.github.cache import CacheConfig, MemoryCache
from changereel.github.client import GitHubClient
from changereel.github.services import CommitService, DiffService
from changereel.jobs.handlers import (
    FetchDiffHandler,
    GenerateSummaryHandler,
    HandlerTable,
    SendEmailHandler,
)
from changereel.jobs.scheduler import (
    DEVELOPMENT_CONFIG,
    PRODUCTION_CONFIG,
    JobScheduler,
    SchedulerConfig,
)
from changereel.jobs.store import JobStore
from changereel.llm.factory import create_llm_provider
from changereel.llm.rate_limiter import RateLimiter
from changereel.llm.summarization import SummarizationService

logger = get_logger(__name__)


class SchedulerRuntime:
    """A scheduler plus the long-lived resources that must be released with it."""

    def __init__(
        self,
        scheduler: JobScheduler,
        cache: MemoryCache,
        rate_limiter: RateLimiter,
        github_client: GitHubClient,
        email_client: Optional[EmailClient] = None,
    ):
        self.scheduler = scheduler
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.github_client = github_client
        self.email_client = email_client

    async def aclose(self) -> None:
        await self.cache.stop_cleanup_timer()
        await self.github_client.close()
        if self.email_client is not None:
            await self.email_client.close()


def scheduler_config_for(settings: Settings) -> SchedulerConfig:
    """Settings-derived knobs, or a preset when JOB_CONFIG_PRESET names one."""
    preset = settings.job_config_preset.lower()
    if preset == "production":
        return PRODUCTION_CONFIG
    if preset == "development":
        return DEVELOPMENT_CONFIG
    return SchedulerConfig.from_settings(settings)


def build_scheduler(
    settings: Settings,
    store: JobStore,
    commits: CommitRepository,
    start_cache_cleanup: bool = True,
) -> SchedulerRuntime:
    """
    Wire the cache, rate limiter, clients, services and handlers into a scheduler.

    The send_email handler is only registered when an email API key is set.

    Raises:
        LLMProviderError: If the LLM provider configuration is invalid
    """
    cache = MemoryCache(
        CacheConfig(
            default_ttl=settings.cache_default_ttl_seconds,
            max_entries=settings.cache_max_entries,
            max_memory=settings.cache_max_memory_bytes,
            cleanup_interval=settings.cache_cleanup_interval_seconds,
        )
    )
    rate_limiter = RateLimiter.from_settings(settings)
    summarization = SummarizationService(create_llm_provider(settings, rate_limiter))
    github_client = GitHubClient.from_settings(settings)

    handlers = HandlerTable(
        [
            FetchDiffHandler(
                CommitService(github_client, cache),
                DiffService(github_client, cache),
            ),
            GenerateSummaryHandler(summarization, commits),
        ]
    )

    email_client = None
    if settings.resend_api_key:
        email_client = EmailClient(settings.resend_api_key, base_url=settings.resend_base_url)
        handlers.register(SendEmailHandler(email_client, commits, sender=settings.email_from))
    else:
        logger.warning("RESEND_API_KEY not set, send_email jobs will be rejected")

    if start_cache_cleanup:
        cache.start_cleanup_timer()

    config = scheduler_config_for(settings)
    scheduler = JobScheduler(store, handlers, config)
    logger.info(
        "Scheduler built",
        handlers=len(handlers),
        max_concurrent_jobs=config.max_concurrent_jobs,
    )
    return SchedulerRuntime(scheduler, cache, rate_limiter, github_client, email_client)

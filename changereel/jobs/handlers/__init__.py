from changereel.jobs.handlers.base import HandlerTable, JobHandler
from changereel.jobs.handlers.fetch_diff import FetchDiffHandler
from changereel.jobs.handlers.generate_summary import GenerateSummaryHandler
from changereel.jobs.handlers.send_email import SendEmailHandler

__all__ = [
    "HandlerTable",
    "JobHandler",
    "FetchDiffHandler",
    "GenerateSummaryHandler",
    "SendEmailHandler",
]

"""Handler contract and the table the scheduler dispatches through."""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, Iterable, Type, TypeVar

from pydantic import BaseModel, ValidationError

from changereel.core.errors import JobValidationError
from changereel.models.job import Job, JobResult, JobType

PayloadT = TypeVar("PayloadT", bound=BaseModel)


class JobHandler(ABC, Generic[PayloadT]):
    """
    Executes one kind of job.

    Subclasses declare ``job_type`` and ``payload_model``; ``validate`` turns
    raw job data into the payload model and ``handle`` does the work.
    """

    job_type: ClassVar[JobType]
    payload_model: ClassVar[Type[BaseModel]]

    def validate(self, data: dict[str, Any]) -> PayloadT:
        """
        Parse job data into this handler's payload model.

        Raises:
            JobValidationError: If the data does not match the payload shape
        """
        try:
            return self.payload_model.model_validate(data)
        except ValidationError as e:
            raise JobValidationError(
                f"Invalid data for {self.job_type.value} job",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    @abstractmethod
    async def handle(self, job: Job, payload: PayloadT) -> JobResult:
        pass


class HandlerTable:
    """Handlers keyed by the job type each one declares."""

    def __init__(self, handlers: Iterable[JobHandler] = ()):
        self._handlers: dict[JobType, JobHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: JobHandler, job_type: JobType | None = None) -> None:
        declared = handler.job_type
        if job_type is not None and job_type != declared:
            raise ValueError(
                f"Handler {type(handler).__name__} serves {declared.value}, not {job_type.value}"
            )
        if declared in self._handlers:
            raise ValueError(f"Handler already registered for {declared.value}")
        self._handlers[declared] = handler

    def get(self, job_type: JobType) -> JobHandler:
        try:
            return self._handlers[job_type]
        except KeyError:
            raise JobValidationError(f"No handler registered for job type: {job_type}") from None

    def __contains__(self, job_type: JobType) -> bool:
        return job_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

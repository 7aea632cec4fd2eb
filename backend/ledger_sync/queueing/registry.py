"""Map (queue, job type) pairs to processor callables."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from ledger_sync.core.errors import PayloadError, UnknownJobTypeError
from ledger_sync.queueing.models import JobRecord

if TYPE_CHECKING:
    from ledger_sync.queueing.worker_pool import JobContext

logger = logging.getLogger(__name__)

Handler = Callable[[BaseModel, "JobContext"], Any]


@dataclass(frozen=True)
class Registration:
    handler: Handler
    payload_model: type[BaseModel]


class ProcessorRegistry:
    """Exactly one handler per ``(queue_name, job_type)``."""

    def __init__(self) -> None:
        self._handlers: dict[tuple[str, str], Registration] = {}

    def register(
        self,
        queue_name: str,
        job_type: str,
        handler: Handler,
        payload_model: type[BaseModel],
    ) -> None:
        key = (queue_name, job_type)
        if key in self._handlers:
            raise ValueError(f"Processor already registered for {job_type} on {queue_name}")
        self._handlers[key] = Registration(handler=handler, payload_model=payload_model)
        logger.debug(f"Registered processor for {job_type} on {queue_name}")

    def accepts(self, queue_name: str, job_type: str) -> bool:
        return (queue_name, job_type) in self._handlers

    def job_types(self, queue_name: str) -> set[str]:
        return {job_type for name, job_type in self._handlers if name == queue_name}

    def decode(self, record: JobRecord) -> BaseModel:
        registration = self._lookup(record.queue_name, record.type)
        try:
            return registration.payload_model.model_validate(record.payload)
        except ValidationError as exc:
            raise PayloadError(f"Invalid payload for {record.type} job {record.id}: {exc}") from exc

    def dispatch(self, record: JobRecord, context: JobContext) -> Any:
        """Decode the payload and run the registered handler."""
        registration = self._lookup(record.queue_name, record.type)
        payload = self.decode(record)
        return registration.handler(payload, context)

    def _lookup(self, queue_name: str, job_type: str) -> Registration:
        try:
            return self._handlers[(queue_name, job_type)]
        except KeyError:
            raise UnknownJobTypeError(
                f"No processor registered for {job_type} on {queue_name}"
            ) from None

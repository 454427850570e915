"""
Shared plumbing for the backup and restore pipelines.

A pipeline run produces one ``PipelineResult``. Steps that may fail
without aborting the run go through ``BasePipeline.execute_safely``,
which records the failure on the result instead of raising it.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from n8n_manager.exceptions import N8NError


@dataclass
class PipelineResult:
    """
    Outcome of a backup or restore run.

    Attributes:
        success: False once any error has been recorded.
        message: One-line summary; merged results join theirs with ``; ``.
        details: Counters and paths reported by the run.
        resources: Per-type maps of the workflows, folders and files touched.
        errors: Recorded failures, each with a message and a timestamp.
        warnings: Non-fatal problems worth reporting in the summary.
    """

    success: bool = True
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    resources: Dict[str, Any] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str, error: Optional[Exception] = None, resource_id: Optional[str] = None) -> None:
        """Record a failure and mark the run unsuccessful."""
        record: Dict[str, Any] = {"message": message, "timestamp": time.time()}
        if error is not None:
            record.update(exception=str(error), exception_type=type(error).__name__)
        if resource_id:
            record["resource_id"] = resource_id
        self.errors.append(record)
        self.success = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_resource(self, resource_type: str, resource_id: str, data: Dict[str, Any]) -> None:
        self.resources.setdefault(resource_type, {})[resource_id] = data

    def merge(self, other: "PipelineResult") -> "PipelineResult":
        """
        Fold the result of a sub-step into this one.

        Returns:
            PipelineResult: ``self``, so calls can be chained.
        """
        self.success = self.success and other.success
        self.message = "; ".join(part for part in (self.message, other.message) if part)
        self.details.update(other.details)
        for resource_type, items in other.resources.items():
            self.resources.setdefault(resource_type, {}).update(items)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BasePipeline(ABC):
    """
    Common base of ``BackupPipeline`` and ``RestorePipeline``.

    Args:
        client: N8NClient used for the REST calls.
        config: N8NConfig holding the run's settings.
        runner: N8NCommandRunner wrapping the n8n export and import commands.
        logger: Logger to use instead of the per-class default.
    """

    def __init__(self, client, config, runner, logger: Optional[logging.Logger] = None):
        self.client = client
        self.config = config
        self.runner = runner
        self.logger = logger or logging.getLogger(f"n8n_manager.{self.__class__.__name__}")

    def execute_safely(
        self,
        operation: Callable,
        error_message: str,
        resource_id: Optional[str] = None,
        result: Optional[PipelineResult] = None,
        **kwargs
    ) -> PipelineResult:
        """
        Run one step, recording a package or filesystem error instead of raising it.

        A returned ``PipelineResult`` is merged into ``result`` and a returned
        dict is added to its details.

        Args:
            operation: Callable invoked with ``kwargs``.
            error_message: Prefix for the logged and recorded failure.
            resource_id: Id attached to the recorded failure.
            result: Result to update; a new one when omitted.

        Returns:
            PipelineResult: The updated result.
        """
        result = PipelineResult() if result is None else result
        try:
            outcome = operation(**kwargs)
        except (N8NError, OSError) as e:
            self.logger.error(f"{error_message}: {e}")
            result.add_error(error_message, e, resource_id)
            return result

        if isinstance(outcome, PipelineResult):
            result.merge(outcome)
        elif isinstance(outcome, dict):
            result.details.update(outcome)
        return result

    @abstractmethod
    def execute(self, *args, **kwargs) -> PipelineResult:
        """Run the operation named by the ``operation`` keyword."""

"""Status codes and modes shared across subsystem boundaries."""

from enum import StrEnum


class OutcomeKind(StrEnum):
    """Tag of the result of processing one work item.

    AUTH_EXPIRED is only ever an intermediate result: the scheduler retries
    the item once and converts a second expiry to FAILED.
    """

    SUCCESS = "success"
    SKIPPED = "skipped"
    AUTH_EXPIRED = "auth_expired"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self is not OutcomeKind.AUTH_EXPIRED


class PipelineStep(StrEnum):
    """Pipeline stage selected on the command line."""

    VIDEO = "video"
    POSTER = "poster"
    THUMBNAIL = "thumbnail"
    ALL = "all"

    def expand(self) -> tuple["PipelineStep", ...]:
        """Concrete steps to run, in order.

        ALL runs video then poster; thumbnail-only is a separate re-run mode
        and is not part of ALL.
        """
        if self is PipelineStep.ALL:
            return (PipelineStep.VIDEO, PipelineStep.POSTER)
        return (self,)

"""
Run options - concurrency limit and failure policy.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class FailurePolicy(str, Enum):
    """
    What the run reports when a package fails.

    Both policies skip every transitive dependent of a failed package and let
    independent subgraphs run to completion.
    """
    FAIL_FAST = "fail-fast"
    CONTINUE = "continue"


@dataclass(frozen=True)
class RunOptions:
    """
    Options for one run.

    Attributes:
        concurrency: Maximum number of actions in flight (None = unbounded)
        failure_policy: FailurePolicy for the run
    """
    concurrency: Optional[int] = None
    failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST

    def __post_init__(self):
        if self.concurrency is not None and self.concurrency < 1:
            raise ValueError("concurrency must be >= 1 or None")
        if not isinstance(self.failure_policy, FailurePolicy):
            object.__setattr__(self, "failure_policy", FailurePolicy(self.failure_policy))

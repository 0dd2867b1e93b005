"""
Trigger evaluator - decide whether a pipeline run starts.

A pure function of (trigger definition, event). A non-matching event is a
normal negative decision, never an error. The decision is computed once per
run and handed downstream; stages never re-check the branch.
"""

from dataclasses import dataclass
from fnmatch import fnmatchcase

from buildmatrix.schemas import TriggerDef, TriggerEvent


@dataclass(frozen=True)
class TriggerDecision:
    """
    Result of evaluating a trigger.

    Attributes:
        should_run: Whether the pipeline run starts
        event: The evaluated event
        reason: Human-readable explanation
    """
    should_run: bool
    event: TriggerEvent
    reason: str

    @property
    def branch(self) -> str:
        """Resolved trigger context passed downstream."""
        return self.event.branch


def _branch_matches(branch: str, patterns: tuple[str, ...]) -> bool:
    return any(fnmatchcase(branch, pattern) for pattern in patterns)


def evaluate_trigger(trigger: TriggerDef, event: TriggerEvent) -> TriggerDecision:
    """
    Evaluate a trigger against an event.

    Args:
        trigger: The pipeline's trigger definition
        event: The incoming event

    Returns:
        TriggerDecision; should_run is False when the event kind or branch
        does not match
    """
    if event.kind not in trigger.events:
        return TriggerDecision(
            should_run=False,
            event=event,
            reason=f"event '{event.kind}' not in {list(trigger.events)}",
        )

    if trigger.branches and not _branch_matches(event.branch, trigger.branches):
        return TriggerDecision(
            should_run=False,
            event=event,
            reason=f"branch '{event.branch}' not in {list(trigger.branches)}",
        )

    scope = f"branch '{event.branch}'" if trigger.branches else "any branch"
    return TriggerDecision(
        should_run=True,
        event=event,
        reason=f"{event.kind} on {scope}",
    )

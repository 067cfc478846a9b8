from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

logger = logging.getLogger("estate_advisor.flow")


@dataclass
class FlowBranch:
    """Branch descriptor for the ordered turn router."""
    name: str
    when: Callable[[object], bool]
    run: Callable[[object], Awaitable[Optional[bool]]]


class FlowRouter:
    """First-match router over an ordered list of branches."""

    def __init__(self, branches: Sequence[FlowBranch]) -> None:
        """Purpose: Initialize the router with branches in priority order.
        Inputs/Outputs: Input is a sequence of FlowBranch; no return value.
        Side Effects / State: Stores the branch list for later dispatch.
        Dependencies: None beyond FlowBranch definitions.
        Failure Modes: None; assumes valid callables in branches.
        If Removed: The orchestrator cannot select a response strategy.
        Testing Notes: Provide two matching branches and ensure only the first runs.
        """
        # Keep priority order exactly as given.
        self._branches: List[FlowBranch] = list(branches)

    @property
    def names(self) -> List[str]:
        return [branch.name for branch in self._branches]

    async def dispatch(self, context: object) -> Optional[str]:
        """Purpose: Run the first branch whose guard matches the context.
        Inputs/Outputs: Input is a mutable context object; output is the name of the
            branch that handled it, or None.
        Side Effects / State: Invokes branch coroutines that may mutate context.
        Dependencies: FlowBranch.when and FlowBranch.run semantics.
        Failure Modes: Exceptions in branches propagate to the caller. A branch that
            returns False declines and dispatch continues with the next one.
        If Removed: Messages are never answered.
        Testing Notes: A declining branch must fall through to the next match.
        """
        # Evaluate guards lazily, in order; explicit False means "not handled".
        for branch in self._branches:
            if not branch.when(context):
                continue
            handled = await branch.run(context)
            if handled is False:
                logger.debug("branch=%s declined", branch.name)
                continue
            return branch.name
        return None

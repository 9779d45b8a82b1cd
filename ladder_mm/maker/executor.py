"""
Plan execution.

Submits a reconciliation plan to an order venue with independent per-action
outcomes. Cancels go first so that funds they release are available to the
creates and edits that follow; within each phase actions run concurrently
and one rejection never stops its siblings.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from ..venues.base import OrderVenue
from ..models import ActionResult, CancelAction, CreateAction, EditAction, PlanAction, ReconciliationPlan

logger = logging.getLogger(__name__)


@dataclass
class ExecutionReport:
    """Per-action results of one plan submission."""

    results: list[ActionResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[ActionResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[ActionResult]:
        return [r for r in self.results if not r.success]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "submitted": len(self.results),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "results": [r.to_dict() for r in self.results],
        }


class PlanExecutor:
    """
    Drives an OrderVenue with a reconciliation plan.

    Example:
        >>> executor = PlanExecutor(venue)
        >>> report = await executor.execute(plan)
        >>> report.failed
        []
    """

    def __init__(self, venue: OrderVenue):
        self.venue = venue

    async def _submit(self, action: PlanAction) -> ActionResult:
        if isinstance(action, CancelAction):
            await self.venue.cancel_order(action.order_id)
            return ActionResult(action=action, success=True, order_id=action.order_id)
        if isinstance(action, EditAction):
            order_id = await self.venue.edit_order(action.order_id, action.side, action.price, action.size)
            return ActionResult(action=action, success=True, order_id=order_id)
        if isinstance(action, CreateAction):
            order_id = await self.venue.create_order(action.side, action.price, action.size)
            return ActionResult(action=action, success=True, order_id=order_id)
        raise TypeError(f"Unknown plan action: {action!r}")

    async def _run_phase(self, actions: list[PlanAction]) -> list[ActionResult]:
        outcomes = await asyncio.gather(*(self._submit(a) for a in actions), return_exceptions=True)
        results = []
        for action, outcome in zip(actions, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"{self.venue.name} rejected {action}: {outcome}")
                results.append(ActionResult(action=action, success=False, error=str(outcome)))
            else:
                results.append(outcome)
        return results

    async def _run_batch(self, plan: ReconciliationPlan) -> list[ActionResult]:
        try:
            results = await self.venue.submit_batch(plan.actions)
        except Exception as e:
            logger.error(f"Batch submission of {len(plan)} actions to {self.venue.name} failed: {e}")
            return [ActionResult(action=a, success=False, error=str(e)) for a in plan.actions]
        if len(results) != len(plan):
            error = f"venue returned {len(results)} results for {len(plan)} actions"
            logger.error(f"Batch submission to {self.venue.name}: {error}")
            return [ActionResult(action=a, success=False, error=error) for a in plan.actions]
        return list(results)

    async def execute(self, plan: ReconciliationPlan) -> ExecutionReport:
        """
        Submit every action of a plan.

        Args:
            plan: Plan for the current cycle.

        Returns:
            ExecutionReport with one result per action.
        """
        report = ExecutionReport()
        if plan.is_empty:
            return report

        if self.venue.supports_batch:
            report.results = await self._run_batch(plan)
        else:
            report.results.extend(await self._run_phase(list(plan.cancels)))
            others = [a for a in plan.actions if not isinstance(a, CancelAction)]
            report.results.extend(await self._run_phase(others))

        logger.info(
            f"Executed plan on {self.venue.name}: "
            f"{len(report.succeeded)}/{len(report.results)} actions succeeded"
        )
        return report

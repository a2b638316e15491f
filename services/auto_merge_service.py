"""
Auto-merge orchestration.

A sweep folds every eligible item of a branch into the first valid draft
found; it never splits a branch's items across several drafts. The global
sweep isolates branches so one failing branch does not stop the rest.
"""

from typing import Optional
import structlog

from config import settings
from models.base import Actor
from models.replacement import (
    AutoMergeResult,
    AutoMergeAllResult,
    BranchMergeFailure,
)
from services.replacement_queue_service import get_replacement_queue_service
from services.merge_service import get_merge_service
from exceptions import AppError

logger = structlog.get_logger(__name__)


def system_actor() -> Actor:
    return Actor(id=settings.system_actor_id, name=settings.system_actor_name)


class AutoMergeService:
    """
    Operator-triggered automatic merges.
    """

    def __init__(self):
        self.queue_service = get_replacement_queue_service()
        self.merge_service = get_merge_service()

    def auto_merge(self, branch_id: str) -> AutoMergeResult:
        """
        Merge a branch's eligible items into its first valid draft.

        Args:
            branch_id: Branch to sweep

        Returns:
            AutoMergeResult (merged_count 0 when there is no queue, no draft
            or nothing eligible)
        """
        logger.info("auto_merge_started", branch_id=branch_id)

        queue = self.queue_service.get_queue_for_branch(branch_id)
        if queue is None:
            return AutoMergeResult(branch_id=branch_id)

        carriers = self.merge_service.carriers_for(queue)
        targets = self.merge_service.find_targets(queue, carriers)
        if not targets:
            logger.info("auto_merge_no_target", branch_id=branch_id)
            return AutoMergeResult(branch_id=branch_id)

        # A draft holding half-finished merges goes first so those items settle
        carrying = {order.id for order in carriers.values()}
        target = next((order for order in targets if order.id in carrying), targets[0])
        items = self.merge_service.mergeable_items(target, queue, carriers)

        merge = self.merge_service.merge(
            queue.id,
            target.id,
            [item.id for item in items],
            system_actor()
        )

        logger.info(
            "auto_merge_completed",
            branch_id=branch_id,
            order_id=target.id,
            merged=len(merge.merged_item_ids)
        )

        return AutoMergeResult(
            branch_id=branch_id,
            merged_count=len(merge.merged_item_ids),
            target_order_id=target.id,
            item_ids=merge.merged_item_ids,
        )

    def auto_merge_all(self) -> AutoMergeAllResult:
        """
        Run auto_merge for every branch that has a queue.

        Errors are collected per branch instead of aborting the sweep.
        """
        queues = self.queue_service.get_all_queues()
        branch_ids = list(dict.fromkeys(queue.branch_id for queue in queues))

        logger.info("auto_merge_all_started", branches=len(branch_ids))

        summary = AutoMergeAllResult()
        for branch_id in branch_ids:
            try:
                result = self.auto_merge(branch_id)
            except AppError as e:
                logger.error(
                    "auto_merge_branch_failed",
                    branch_id=branch_id,
                    code=e.code,
                    error=e.message
                )
                summary.errors.append(BranchMergeFailure(
                    branch_id=branch_id,
                    code=e.code,
                    message=e.message,
                ))
                continue
            except Exception as e:
                logger.error(
                    "auto_merge_branch_failed",
                    branch_id=branch_id,
                    error=str(e),
                    error_type=type(e).__name__
                )
                summary.errors.append(BranchMergeFailure(
                    branch_id=branch_id,
                    code="INTERNAL_ERROR",
                    message=str(e),
                ))
                continue

            summary.results.append(result)
            summary.merged_count += result.merged_count

        logger.info(
            "auto_merge_all_completed",
            merged=summary.merged_count,
            failed_branches=len(summary.errors)
        )

        return summary


# Singleton instance
_auto_merge_service: Optional[AutoMergeService] = None


def get_auto_merge_service() -> AutoMergeService:
    """Get or create AutoMergeService instance."""
    global _auto_merge_service
    if _auto_merge_service is None:
        _auto_merge_service = AutoMergeService()
    return _auto_merge_service

"""Batch orchestration: fan items out to a bounded worker pool, collect outcomes in order."""
import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Mapping, Optional, Sequence

from mediabatch.config import MAX_WORKERS
from mediabatch.conversion.models import (
    BatchResult,
    ConversionConfig,
    InputItem,
    ItemOutcome,
    TaskStatus,
)
from mediabatch.conversion.service import ConversionService, get_conversion_service

logger = logging.getLogger("mediabatch.batch")


class BatchOrchestrator:
    """Schedules one conversion per item. Does no encoding itself."""

    def __init__(self, service: Optional[ConversionService] = None, max_workers: int = MAX_WORKERS):
        self.service = service or get_conversion_service()
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="convert")
        logger.info("BatchOrchestrator initialized with max_workers=%s", max_workers)

    def _run(self, item: InputItem, config: ConversionConfig) -> ItemOutcome:
        return ItemOutcome.from_task(self.service.run(item, config))

    def process_batch(
        self,
        items: Sequence[InputItem],
        configs: Mapping[str, ConversionConfig],
    ) -> BatchResult:
        """Convert all items and return one outcome per item, in submission order.

        Blocks until every item is done or failed. A failing item never affects
        the others.
        """
        outcomes: list[Optional[ItemOutcome]] = [None] * len(items)
        futures: dict[Future, int] = {}
        for index, item in enumerate(items):
            config = configs.get(item.item_id)
            if config is None:
                logger.error("No configuration resolved for %s", item.original_name)
                self.service.scratch.discard(item.content_path)
                outcomes[index] = ItemOutcome(item=item, status=TaskStatus.FAILED, error="No configuration resolved")
                continue
            futures[self._executor.submit(self._run, item, config)] = index

        for future in as_completed(futures):
            index = futures[future]
            item = items[index]
            try:
                outcomes[index] = future.result()
            except Exception as e:
                logger.exception("Task failed for %s: %s", item.original_name, e)
                self.service.scratch.discard(item.content_path)
                outcomes[index] = ItemOutcome(item=item, status=TaskStatus.FAILED, error=str(e) or e.__class__.__name__)

        result = BatchResult(outcomes=tuple(outcomes))
        logger.info(
            "Batch finished: %s items, %s failed",
            len(result),
            len(result.failed),
        )
        return result

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


# Singleton
_orchestrator: Optional[BatchOrchestrator] = None


def get_batch_orchestrator() -> BatchOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = BatchOrchestrator()
    return _orchestrator


def shutdown_batch_orchestrator() -> None:
    global _orchestrator
    if _orchestrator is not None:
        _orchestrator.shutdown()
        _orchestrator = None


def process_batch(
    items: Sequence[InputItem],
    configs: Mapping[str, ConversionConfig],
) -> BatchResult:
    """Run a batch on the shared orchestrator."""
    return get_batch_orchestrator().process_batch(items, configs)

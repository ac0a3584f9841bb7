"""Periodic background cluster review.

Enabled when ``CLUSTER_SCAN_INTERVAL_SECONDS > 0``; started and stopped by
the FastAPI lifespan. The scan itself runs in a worker thread and is
cancelled between keyset pages on shutdown.
"""

import asyncio
import logging
import threading

from caseflow.dedup.clusters import ClusterScanCancelled
from caseflow.dedup.models import DuplicateCluster
from caseflow.dedup.service import DeduplicationService

logger = logging.getLogger(__name__)


class ClusterReviewJob:
    def __init__(self, service: DeduplicationService, interval_seconds: float):
        self.service = service
        self.interval_seconds = interval_seconds
        self._cancel = threading.Event()
        self._task: asyncio.Task | None = None
        self.last_result: list[DuplicateCluster] | None = None

    def run_once(self) -> list[DuplicateCluster] | None:
        """One full scan; returns None if cancelled part-way."""
        try:
            with self.service.session_factory() as session:
                clusters = self.service.miner.mine(session, cancel=self._cancel)
        except ClusterScanCancelled:
            logger.info("Cluster review cancelled before completion")
            return None

        self.last_result = clusters
        if clusters:
            top = clusters[0]
            logger.info(
                f"Cluster review: {len(clusters)} duplicate cluster(s); largest "
                f"'{top.group_key}' with {top.case_count} case(s)"
            )
        else:
            logger.info("Cluster review: no duplicate clusters")
        return clusters

    async def _loop(self):
        while not self._cancel.is_set():
            await asyncio.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.run_once)
            except Exception as e:
                logger.exception(f"Cluster review failed, retrying next interval: {e}")

    def start(self) -> asyncio.Task:
        self._cancel.clear()
        self._task = asyncio.create_task(self._loop(), name="cluster-review")
        logger.info(f"Cluster review job started (every {self.interval_seconds}s)")
        return self._task

    async def stop(self):
        self._cancel.set()
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Cluster review job stopped")

"""Batch job trigger endpoints (daily learning, weekly similarities)."""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query

from learning_worker.main import app as celery_app
from uplift_service.api.deps import get_learning_job, get_similarity_job
from uplift_service.services.learning import LearningJob
from uplift_service.services.similarity import SimilarityJob

logger = structlog.get_logger()

router = APIRouter()

LEARNING_TASK = "learning_worker.tasks.daily_learning.run_daily_learning"
SIMILARITY_TASK = "learning_worker.tasks.similarity.run_similarity_computation"


def enqueue_learning(shop: str) -> str:
    """Queue the learning task on the worker; returns the task id."""
    task = celery_app.send_task(LEARNING_TASK, args=[shop], queue="learning")
    return task.id


def enqueue_similarity(shop: str) -> str:
    task = celery_app.send_task(SIMILARITY_TASK, args=[shop], queue="learning")
    return task.id


@router.post("/run")
async def run_learning(
    shop: Annotated[str, Query(min_length=1, description="Shop domain")],
    inline: Annotated[bool, Query(description="Run in this request instead of queueing")] = False,
    job: LearningJob = Depends(get_learning_job),
) -> dict[str, Any]:
    """
    Trigger the learning pass for a shop.

    By default the run is queued on the ``learning`` worker queue. With
    ``inline=true`` it runs in the request and the result is returned.
    """
    if not inline:
        task_id = enqueue_learning(shop)
        logger.info("Queued learning run", shop=shop, task_id=task_id)
        return {"shop": shop, "queued": True, "task_id": task_id}

    result = await job.run(shop)
    return result.to_dict()


@router.post("/similarities/run")
async def run_similarities(
    shop: Annotated[str, Query(min_length=1, description="Shop domain")],
    inline: Annotated[bool, Query(description="Run in this request instead of queueing")] = False,
    job: SimilarityJob = Depends(get_similarity_job),
) -> dict[str, Any]:
    """Trigger the co-purchase similarity computation for a shop."""
    if not inline:
        task_id = enqueue_similarity(shop)
        logger.info("Queued similarity computation", shop=shop, task_id=task_id)
        return {"shop": shop, "queued": True, "task_id": task_id}

    result = await job.run(shop)
    return result.to_dict()

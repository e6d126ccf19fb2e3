"""Read-only endpoints over checkpoints and the readiness report."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..models import (
    CheckpointListResponse,
    CheckpointResponse,
    CheckpointSummary,
    ReadinessResponse,
    ScoreRequest,
)
from ..storage import get_checkpoint_store, get_object_storage
from ...loaders.base import ObjectStorage
from ...orchestrator import load_scoring_inputs
from ...services.checkpoint import CheckpointError, CheckpointNotFoundError, CheckpointStore
from ...services.scorer import MigrationScorer

logger = logging.getLogger(__name__)

router = APIRouter()

READINESS_KEY = "media-migration-validation"


@router.get("/checkpoints", response_model=CheckpointListResponse)
async def list_checkpoints(store: CheckpointStore = Depends(get_checkpoint_store)):
    """List saved checkpoints with their metadata."""
    summaries = []
    for key in store.keys():
        try:
            summaries.append(CheckpointSummary(key=key, metadata=store.load(key).metadata))
        except CheckpointError as e:
            logger.warning(f"Skipping unreadable checkpoint {key}: {e}")
    return CheckpointListResponse(checkpoints=summaries, total=len(summaries))


@router.get("/checkpoints/{key}", response_model=CheckpointResponse)
async def get_checkpoint(key: str, store: CheckpointStore = Depends(get_checkpoint_store)):
    """Get one checkpoint, payload included."""
    try:
        checkpoint = store.load(key)
    except CheckpointNotFoundError:
        raise HTTPException(status_code=404, detail="Checkpoint not found")
    except CheckpointError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CheckpointResponse(key=checkpoint.key, metadata=checkpoint.metadata, payload=checkpoint.payload)


@router.get("/readiness", response_model=ReadinessResponse)
async def get_readiness(store: CheckpointStore = Depends(get_checkpoint_store)):
    """Get the last persisted readiness report."""
    try:
        return store.load_payload(READINESS_KEY)
    except CheckpointNotFoundError:
        raise HTTPException(status_code=404, detail="No readiness report yet")


@router.post("/readiness/score", response_model=ReadinessResponse)
def score_readiness(
    request: ScoreRequest,
    store: CheckpointStore = Depends(get_checkpoint_store),
    storage: Optional[ObjectStorage] = Depends(get_object_storage),
):
    """Score the media migration from its persisted reports."""
    scorer = MigrationScorer(
        storage=storage,
        sample_size=request.sample_size,
        sample_strategy=request.sample_strategy.value,
        per_category_sample=request.per_category_sample,
    )
    report = scorer.score(load_scoring_inputs(store))
    if request.persist:
        store.save(READINESS_KEY, report)
    return report.to_dict()

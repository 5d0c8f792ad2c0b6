"""
API endpoints for weighted heuristic scoring.

Provides endpoints for:
- Listing the available scorer configurations
- Scoring one record with a named scorer (and persisting the result)
- Scoring a batch of records without persisting
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from intake_backend.api_deps import get_record_store, to_http_error
from intake_backend.schemas import (
    BatchScoreRequest,
    BatchScoreResponse,
    ScoreRequest,
    ScoreResponse,
    ScorerInfo,
    ScorerListResponse,
)
from intake_backend.services.errors import IntakeError
from intake_backend.services.heuristic_scorer import score, score_and_store, score_records_batch
from intake_backend.services.record_store import RecordStore
from intake_backend.services.scorer_configs import SCORERS, get_scorer_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scoring", tags=["scoring"])


@router.get("/scorers", response_model=ScorerListResponse)
async def list_scorers():
    return ScorerListResponse(scorers=[
        ScorerInfo(
            name=config.name,
            max_total=config.max_total,
            high_threshold=config.high_threshold,
            low_threshold=config.low_threshold,
            sub_scorers={s.name: s.max_points for s in config.sub_scorers},
            disqualifiers=[d.name for d in config.disqualifiers],
        )
        for config in SCORERS.values()
    ])


@router.post("/{scorer_name}", response_model=ScoreResponse)
async def score_record(
    scorer_name: str,
    request: ScoreRequest,
    store: RecordStore = Depends(get_record_store),
):
    """
    Score one record. With `persist` (and an `entity_id`) the result is
    upserted, so re-scoring after the record changes replaces the old row.
    """
    try:
        config = get_scorer_config(scorer_name)
    except IntakeError as e:
        raise to_http_error(e)

    entity_id = request.entity_id or request.record.get("id")
    entity_id = str(entity_id) if entity_id is not None else None

    try:
        if request.persist and entity_id:
            row = await score_and_store(store, entity_id, request.record, config)
            return ScoreResponse(
                entity_id=entity_id,
                scorer=config.name,
                total=row.total_score,
                breakdown=row.breakdown,
                priority=row.priority,
                disqualified_by=row.disqualified_by,
            )
        result = score(request.record, config)
    except Exception as e:
        logger.exception("[SCORING] %s scorer failed for %s", scorer_name, entity_id)
        raise HTTPException(status_code=500, detail=f"Failed to score record: {str(e)}")

    return ScoreResponse(entity_id=entity_id, **result.to_dict())


@router.post("/{scorer_name}/batch", response_model=BatchScoreResponse)
async def score_batch(scorer_name: str, request: BatchScoreRequest):
    try:
        config = get_scorer_config(scorer_name)
    except IntakeError as e:
        raise to_http_error(e)

    results = [
        ScoreResponse(
            entity_id=str(record["id"]) if record.get("id") is not None else None,
            **result.to_dict(),
        )
        for record, result in score_records_batch(request.records, config)
    ]
    return BatchScoreResponse(scorer=config.name, results=results, count=len(results))

"""
API endpoints for aggregated profiles and safety screenings.

Provides endpoints for:
- Reading a user's aggregated profile (optionally with the per-trait audit)
- Listing the raw per-turn extractions behind it
- Reading a user's safety screening with its evidence trail
- Rebuilding both caches from the raw records
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from intake_backend.api_deps import get_record_store
from intake_backend.schemas import (
    ExtractionListResponse,
    ExtractionRecord,
    ProfileResponse,
    SafetyScreeningResponse,
)
from intake_backend.services.aggregation_engine import ProfileAggregator
from intake_backend.services.record_store import RecordStore
from intake_backend.services.safety_screening import SafetyScreeningEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["profile"])


def _profile_response(profile, include_audit: bool) -> ProfileResponse:
    return ProfileResponse(
        user_id=profile.user_id,
        frameworks=profile.frameworks or {},
        framework_confidence=profile.framework_confidence or {},
        extraction_count=profile.extraction_count or 0,
        audit=(profile.audit or {}) if include_audit else None,
        updated_at=profile.updated_at,
    )


def _screening_response(screening) -> SafetyScreeningResponse:
    return SafetyScreeningResponse(
        user_id=screening.user_id,
        overall_risk_level=screening.overall_risk_level,
        flagged_for_review=bool(screening.flagged_for_review),
        max_severity=float(screening.max_severity or 0.0),
        category_scores=screening.category_scores or {},
        signal_counts=screening.signal_counts or {},
        evidence=screening.evidence or [],
        flagged_at=screening.flagged_at,
        reviewed_at=screening.reviewed_at,
    )


@router.get("/api/profile/{user_id}", response_model=ProfileResponse)
async def get_profile(
    user_id: str,
    include_audit: bool = False,
    store: RecordStore = Depends(get_record_store),
):
    profile = await store.get_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"No profile for user {user_id}")
    return _profile_response(profile, include_audit)


@router.get("/api/profile/{user_id}/extractions", response_model=ExtractionListResponse)
async def list_extractions(
    user_id: str,
    store: RecordStore = Depends(get_record_store),
):
    rows = await store.list_extractions_for_user(user_id)
    extractions = [
        ExtractionRecord(
            turn_id=str(row.turn_id),
            turn_sequence=row.turn_sequence,
            framework=row.framework,
            source=row.source,
            traits=row.traits or {},
        )
        for row in rows
    ]
    return ExtractionListResponse(user_id=user_id, extractions=extractions, count=len(extractions))


@router.post("/api/profile/{user_id}/reaggregate", response_model=ProfileResponse)
async def reaggregate_profile(
    user_id: str,
    store: RecordStore = Depends(get_record_store),
):
    """Rebuild the profile and safety screening from the stored per-turn records."""
    try:
        profile = await ProfileAggregator(store).reaggregate(user_id)
        # Signals can exist for turns that yielded no trait readings
        await SafetyScreeningEngine(store).rescreen(user_id)
        # The 404 below would otherwise roll back the rebuilt screening
        await store.commit()
    except Exception as e:
        logger.exception("[AGGREGATION] Re-aggregation failed for %s", user_id)
        raise HTTPException(status_code=500, detail=f"Failed to re-aggregate profile: {str(e)}")

    if profile is None:
        raise HTTPException(status_code=404, detail=f"No extractions for user {user_id}")
    return _profile_response(profile, include_audit=False)


@router.get("/api/safety/{user_id}", response_model=SafetyScreeningResponse)
async def get_safety_screening(
    user_id: str,
    store: RecordStore = Depends(get_record_store),
):
    screening = await SafetyScreeningEngine(store).get_screening(user_id)
    if screening is None:
        raise HTTPException(status_code=404, detail=f"No safety screening for user {user_id}")
    return _screening_response(screening)

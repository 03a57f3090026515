"""Annual award targets: feed the projects-needed KPI."""

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from app.api.deps import Session
from app.core.cache import metrics_cache
from app.models.annual_target import AnnualTarget, AnnualTargetRead, AnnualTargetUpsert
from app.models.base import utcnow
from app.models.metric import MetricName

router = APIRouter(prefix="/targets", tags=["targets"])


@router.put("/{year}", response_model=AnnualTargetRead)
async def upsert_target(
    year: int,
    body: AnnualTargetUpsert,
    session: Session,
) -> AnnualTargetRead:
    result = await session.execute(select(AnnualTarget).where(AnnualTarget.year == year))
    target = result.scalar_one_or_none()
    if target is None:
        target = AnnualTarget(year=year, target_amount=body.target_amount)
    else:
        target.target_amount = body.target_amount
        target.updated_at = utcnow()
    session.add(target)
    await session.commit()
    await session.refresh(target)
    metrics_cache.invalidate_metric(MetricName.PROJECTS_NEEDED)
    return AnnualTargetRead.model_validate(target)


@router.get("/{year}", response_model=AnnualTargetRead)
async def get_target(year: int, session: Session) -> AnnualTargetRead:
    result = await session.execute(select(AnnualTarget).where(AnnualTarget.year == year))
    target = result.scalar_one_or_none()
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No target for that year")
    return AnnualTargetRead.model_validate(target)

"""PipelineProject CRUD: every write invalidates the cached KPIs."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from app.api.deps import Session
from app.api.v1.metrics import Filters
from app.core.cache import metrics_cache
from app.models.base import utcnow
from app.models.metric import MetricName
from app.models.pipeline_project import (
    GeographicPoint,
    PipelineProject,
    PipelineProjectCreate,
    PipelineProjectRead,
    PipelineProjectUpdate,
    PipelineType,
)
from app.services.aggregates import apply_filters

router = APIRouter(prefix="/projects", tags=["projects"])


def _invalidate_kpis() -> None:
    for metric in MetricName:
        metrics_cache.invalidate_metric(metric)


@router.post("", response_model=PipelineProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    body: PipelineProjectCreate,
    session: Session,
) -> PipelineProjectRead:
    project = PipelineProject(**body.model_dump())
    session.add(project)
    await session.commit()
    await session.refresh(project)
    _invalidate_kpis()
    return PipelineProjectRead.model_validate(project)


@router.get("", response_model=list[PipelineProjectRead])
async def list_projects(
    session: Session,
    pipeline_type: PipelineType | None = None,
    stage_id: str | None = None,
) -> list[PipelineProjectRead]:
    stmt = select(PipelineProject).order_by(PipelineProject.created_at.desc())  # type: ignore[union-attr]
    if pipeline_type is not None:
        stmt = stmt.where(PipelineProject.pipeline_type == pipeline_type)
    if stage_id is not None:
        stmt = stmt.where(PipelineProject.stage_id == stage_id)
    result = await session.execute(stmt)
    return [PipelineProjectRead.model_validate(p) for p in result.scalars().all()]


@router.get("/geo", response_model=list[GeographicPoint])
async def get_geographic_distribution(
    session: Session,
    filters: Filters,
) -> list[GeographicPoint]:
    """Opportunities with coordinates, narrowed by the same filters as the KPIs."""
    stmt = select(PipelineProject).where(
        PipelineProject.project_latitude.is_not(None),  # type: ignore[union-attr]
        PipelineProject.project_longitude.is_not(None),  # type: ignore[union-attr]
    )
    stmt = apply_filters(stmt, filters)
    result = await session.execute(stmt)
    return [
        GeographicPoint(
            id=p.id,
            name=p.name,
            latitude=p.project_latitude,
            longitude=p.project_longitude,
            value=p.value,
            stage=p.stage_id,
            state=p.project_state,
        )
        for p in result.scalars().all()
    ]


@router.get("/{project_id}", response_model=PipelineProjectRead)
async def get_project(
    project_id: uuid.UUID,
    session: Session,
) -> PipelineProjectRead:
    project = await _get_or_404(project_id, session)
    return PipelineProjectRead.model_validate(project)


@router.patch("/{project_id}", response_model=PipelineProjectRead)
async def update_project(
    project_id: uuid.UUID,
    body: PipelineProjectUpdate,
    session: Session,
) -> PipelineProjectRead:
    project = await _get_or_404(project_id, session)

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(project, field, value)

    project.updated_at = utcnow()
    session.add(project)
    await session.commit()
    await session.refresh(project)
    _invalidate_kpis()
    return PipelineProjectRead.model_validate(project)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: uuid.UUID,
    session: Session,
) -> None:
    project = await _get_or_404(project_id, session)
    await session.delete(project)
    await session.commit()
    _invalidate_kpis()


# ── Internal helper ───────────────────────────────────────────

async def _get_or_404(project_id: uuid.UUID, session) -> PipelineProject:
    project = await session.get(PipelineProject, project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project

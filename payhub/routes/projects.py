from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user, require_roles
from ..models.models import Project, User
from ..schemas.projects import ProjectCreate, ProjectResponse, ProjectSummary
from ..services import projects as project_service

router = APIRouter(prefix="/projects", tags=["projects"])


def project_out(project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        pay_type=project.pay_type,
        pay_rate=project.pay_rate,
        allowances=project_service.project_allowances(project),
        location_lat=project.location_lat,
        location_lng=project.location_lng,
        radius=project.radius if project.radius is not None else settings.geo_radius_m_default,
        start_date=project.start_date,
        end_date=project.end_date,
        status=project_service.derive_status(project),
        created_at=project.created_at,
    )


@router.get("", response_model=List[ProjectResponse])
def list_projects(
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return [project_out(p) for p in db.query(Project).order_by(Project.name.asc()).all()]


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return project_out(project_service.get_project(db, project_id))


@router.get("/{project_id}/summary", response_model=ProjectSummary)
def project_summary(
    project_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return project_service.project_summary(db, project_id)


@router.post("", response_model=ProjectResponse, status_code=201)
def create_project(
    payload: ProjectCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    """Register a project's site and pay configuration."""
    data = payload.model_dump()
    data["pay_type"] = payload.pay_type.value
    project = project_service.create_project(db, data, actor_id=user.id)
    return project_out(project)

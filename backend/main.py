from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import List
import logging
import os
import sys

from database import get_db, engine, Base
import models
import schemas
from errors import TeamworkError
from auth.routes import router as auth_router
from auth.dependencies import get_current_admin, get_current_principal
from auth.permissions import Principal
from services import team_service, project_service, task_service

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Teamwork Tracker API",
    description="Role-based teams, projects and hierarchical tasks",
    version="1.0.0"
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)


# ============== Error Translation ==============

@app.exception_handler(TeamworkError)
async def teamwork_error_handler(request: Request, exc: TeamworkError):
    logger.debug(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and bad enum values are reported as 400 with a readable message."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    detail = f"{field}: {message}" if field else message
    logger.info(f"{request.method} {request.url.path} rejected: {detail}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Unexpected error"},
    )


# ============== Startup: Schema and Admin User ==============

@app.on_event("startup")
async def ensure_admin_user():
    """
    Create tables and make sure a global admin exists.

    Seeding is controlled by SEED_ADMIN (default true), ADMIN_EMAIL and
    ADMIN_PASSWORD. The default password is refused in production-like
    environments.
    """
    Base.metadata.create_all(bind=engine)

    if os.environ.get("SEED_ADMIN", "true").lower() != "true":
        logger.debug("SEED_ADMIN disabled, skipping admin seeding")
        return

    from database import SessionLocal
    from auth.security import hash_password, is_production_like

    admin_email = os.environ.get("ADMIN_EMAIL", "admin@example.com")
    admin_password = os.environ.get("ADMIN_PASSWORD", "admin123")
    is_default_password = admin_password.strip() == "admin123"

    if is_production_like() and (is_default_password or len(admin_password.strip()) < 8):
        logger.error(
            "STARTUP FAILED: a non-default ADMIN_PASSWORD of at least 8 characters "
            "is required in production/staging"
        )
        sys.exit(1)

    db = SessionLocal()
    try:
        admin = db.query(models.User).filter(models.User.email == admin_email).first()
        if admin:
            logger.info(f"Admin user already exists (email: {admin_email})")
            return

        admin = models.User(
            name="Admin",
            email=admin_email,
            role=models.UserRole.admin,
            password_hash=hash_password(admin_password),
        )
        db.add(admin)
        db.commit()

        if is_default_password:
            logger.warning(
                f"Admin user {admin_email} created with the DEFAULT password. "
                "Set ADMIN_PASSWORD for anything but local development."
            )
        else:
            logger.info(f"Admin user {admin_email} created with password from ADMIN_PASSWORD")
    except SQLAlchemyError as e:
        logger.error(f"Failed to ensure admin user exists: {e}")
        db.rollback()
    finally:
        db.close()


@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Users ==============

@app.get("/api/users", response_model=List[schemas.User])
def list_users(
    current_user: models.User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """List all users (admin only)."""
    logger.debug(f"Admin {current_user.id} listing all users")
    return db.query(models.User).order_by(models.User.id).all()


# ============== Teams ==============

@app.post("/api/teams", response_model=schemas.Team, status_code=status.HTTP_201_CREATED)
def create_team(
    team: schemas.TeamCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Create a new team led by the current user (team leads and admins only)."""
    return team_service.create_team_for(db, team.name, team.description, principal)


@app.get("/api/teams", response_model=List[schemas.Team])
def list_teams(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List teams visible to the current user, filtered by role."""
    return team_service.list_teams(db, principal)


@app.get("/api/teams/{team_id}", response_model=schemas.TeamWithMembers)
def get_team(
    team_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Get team details with members (admin, lead or member)."""
    return team_service.get_team(db, team_id, principal)


@app.delete("/api/teams/{team_id}", response_model=schemas.MessageResponse)
def delete_team(
    team_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Delete a team with its projects and tasks (admin or team lead)."""
    team_service.delete_team(db, team_id, principal)
    return {"message": "Team deleted"}


@app.get("/api/teams/{team_id}/members", response_model=List[schemas.TeamMemberResponse])
def list_team_members(
    team_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List team members (admin, lead or member)."""
    return team_service.list_members(db, team_id, principal)


@app.get("/api/teams/{team_id}/available-users", response_model=List[schemas.UserSummary])
def list_available_users_for_team(
    team_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List users who can still be added to a team (team leads and admins)."""
    return team_service.list_available_users(db, team_id, principal)


@app.post("/api/teams/{team_id}/members", response_model=schemas.TeamMemberResponse)
def add_team_member(
    team_id: int,
    member: schemas.TeamMemberCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Add a member to a team (admin or team lead). Adding an existing member is an error."""
    return team_service.add_member(db, team_id, member.user_id, principal)


@app.delete("/api/teams/{team_id}/members", response_model=schemas.MessageResponse)
def remove_team_member(
    team_id: int,
    user_id: int = Query(...),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Remove a member from a team (admin or team lead). Removing a non-member succeeds."""
    team_service.remove_member(db, team_id, user_id, principal)
    return {"message": "Team member removed"}


# ============== Projects ==============

@app.get("/api/teams/{team_id}/projects", response_model=List[schemas.Project])
def list_projects(
    team_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List the team's projects, newest first."""
    return project_service.list_projects(db, team_id, principal)


@app.post("/api/teams/{team_id}/projects", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
def create_project(
    team_id: int,
    project: schemas.ProjectCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Create a project in the team (admin or team lead)."""
    return project_service.create_project(
        db, team_id, project.name, project.description, project.status, principal
    )


@app.get("/api/teams/{team_id}/projects/{project_id}", response_model=schemas.Project)
def get_project(
    team_id: int,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return project_service.get_project(db, team_id, project_id, principal)


@app.patch("/api/teams/{team_id}/projects/{project_id}", response_model=schemas.Project)
def update_project(
    team_id: int,
    project_id: int,
    project_update: schemas.ProjectUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Partially update a project (admin or team lead)."""
    patch = project_update.model_dump(exclude_unset=True)
    return project_service.update_project(db, team_id, project_id, patch, principal)


@app.delete("/api/teams/{team_id}/projects/{project_id}", response_model=schemas.MessageResponse)
def delete_project(
    team_id: int,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Delete a project and its tasks (admin or team lead)."""
    project_service.delete_project(db, team_id, project_id, principal)
    return {"message": "Project deleted"}


# ============== Tasks ==============

@app.get("/api/teams/{team_id}/projects/{project_id}/tasks", response_model=List[schemas.Task])
def list_tasks(
    team_id: int,
    project_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List the project's tasks, newest first."""
    return task_service.list_tasks(db, team_id, project_id, principal)


@app.post(
    "/api/teams/{team_id}/projects/{project_id}/tasks",
    response_model=schemas.Task,
    status_code=status.HTTP_201_CREATED,
)
def create_task(
    team_id: int,
    project_id: int,
    task: schemas.TaskCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Create a task (any team participant). The author is always the current user."""
    return task_service.create_task(
        db,
        team_id,
        project_id,
        task.title,
        principal,
        description=task.description,
        priority=task.priority,
        assignee_ids=task.assignee_ids,
        observer_ids=task.observer_ids,
        parent_id=task.parent_id,
        related_task_ids=task.related_task_ids,
    )


@app.get("/api/teams/{team_id}/projects/{project_id}/tasks/{task_id}", response_model=schemas.Task)
def get_task(
    team_id: int,
    project_id: int,
    task_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return task_service.get_task(db, team_id, project_id, task_id, principal)


@app.patch("/api/teams/{team_id}/projects/{project_id}/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    team_id: int,
    project_id: int,
    task_id: int,
    task_update: schemas.TaskUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Partially update a task (any team participant); relation lists replace the whole set."""
    patch = task_update.model_dump(exclude_unset=True)
    return task_service.update_task(db, team_id, project_id, task_id, patch, principal)


@app.delete("/api/teams/{team_id}/projects/{project_id}/tasks/{task_id}", response_model=schemas.MessageResponse)
def delete_task(
    team_id: int,
    project_id: int,
    task_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Delete a task (admin, team lead or the task's author)."""
    task_service.delete_task(db, team_id, project_id, task_id, principal)
    return {"message": "Task deleted"}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "6001"))
    logger.info(f"Teamwork Tracker API starting on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)

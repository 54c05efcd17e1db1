"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the CourseHub backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses.

Endpoints implemented:
- POST /auth/register, POST /auth/login, POST /role
- GET/POST /classes, GET/POST /classes/join
- GET/POST /classes/{class_id}/projects
- GET/POST /classes/{class_id}/projects/{project_id}/groups
- GET/POST /survey
- GET/POST /user/tasks, PATCH/DELETE /user/tasks/{task_id}
- GET/POST /activity
- GET /health

Read endpoints polled by the client cache send an `ETag` and answer a
matching `If-None-Match` with 304 Not Modified.
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
import hashlib
import json
import logging
import time
import uuid
from typing import Optional
from .database import get_session, create_db_and_tables
from . import services, models
from .auth import get_current_user
from .schemas import (
    ActivityIn, ClassIn, GroupingIn, JoinClassIn, LoginIn, ProjectIn, RegisterIn, RoleIn,
    SurveyIn, TaskIn, TaskUpdate, TokenOut,
)
from .config import settings

app = FastAPI(title="CourseHub API")
logger = logging.getLogger("coursehub.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag", "X-Request-ID"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    event = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "client": request.client.host if request.client else "unknown",
    }
    try:
        response = await call_next(request)
    except Exception:
        event["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception("request_failed %s", json.dumps(event, ensure_ascii=True))
        raise
    response.headers["X-Request-ID"] = req_id
    event["status_code"] = response.status_code
    event["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info("request_done %s", json.dumps(event, ensure_ascii=True))
    return response


@app.exception_handler(services.NotFound)
async def not_found_handler(request: Request, exc: services.NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(services.Forbidden)
async def forbidden_handler(request: Request, exc: services.Forbidden):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


def compute_etag(payload) -> str:
    """Strong validator derived from the JSON representation of `payload`."""
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return '"' + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32] + '"'


def _etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    if not if_none_match:
        return False
    candidates = [t.strip() for t in if_none_match.split(",")]
    return "*" in candidates or etag in {c[2:] if c.startswith("W/") else c for c in candidates}


def conditional_json(request: Request, payload) -> Response:
    """Return `payload` with an ETag, or an empty 304 if the client already has it."""
    etag = compute_etag(payload)
    if _etag_matches(request.headers.get("If-None-Match"), etag):
        return Response(status_code=304, headers={"ETag": etag})
    return JSONResponse(content=payload, headers={"ETag": etag})


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new professor or student.

    Registering an email that already exists returns 400.
    """
    auth = services.AuthService(db)
    if auth.user_repo.get_by_email(payload.email.strip().lower()):
        raise HTTPException(status_code=400, detail='email already registered')
    try:
        user = auth.register(payload.email, payload.password, name=payload.name, role=payload.role)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'id': user.id, 'email': user.email, 'name': user.name, 'role': user.role}


@app.post('/auth/login', response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token."""
    token = services.AuthService(db).authenticate(payload.email, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


@app.post('/role')
def set_role(payload: RoleIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        updated = services.AuthService(db).set_role(user, payload.role)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'id': updated.id, 'role': updated.role}


@app.get('/classes')
def list_classes(request: Request, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Classes owned by a professor, or joined by a student."""
    svc = services.ClassService(db)
    classes = [svc.class_out(c) for c in svc.list_classes(user)]
    return conditional_json(request, {'classes': classes})


@app.post('/classes')
def create_class(payload: ClassIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    svc = services.ClassService(db)
    try:
        cls = svc.create_class(user, payload.name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'class': svc.class_out(cls)}


@app.get('/classes/join')
def preview_join_code(code: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Describe the class behind a join code without joining it."""
    try:
        cls = services.ClassService(db).preview_code(user, code)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'class': cls}


@app.post('/classes/join')
def join_class(payload: JoinClassIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        cls = services.ClassService(db).join(user, payload.code)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'class': cls}


@app.get('/classes/{class_id}/projects')
def list_projects(class_id: int, request: Request, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    svc = services.ClassService(db)
    projects = [svc.project_out(p) for p in svc.list_projects(user, class_id)]
    return conditional_json(request, {'projects': projects})


@app.post('/classes/{class_id}/projects')
def create_project(class_id: int, payload: ProjectIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    svc = services.ClassService(db)
    fields = payload.model_dump(exclude={'name'})
    try:
        project = svc.create_project(user, class_id, payload.name, **fields)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'project': svc.project_out(project)}


@app.get('/classes/{class_id}/projects/{project_id}/groups')
def list_groups(class_id: int, project_id: int, request: Request, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    groups = services.GroupingService(db).list_groups(user, class_id, project_id)
    return conditional_json(request, {'groups': groups})


@app.post('/classes/{class_id}/projects/{project_id}/groups')
def form_groups(class_id: int, project_id: int, payload: GroupingIn, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    """Split the class roster into groups for a project.

    `mode` is ``manual`` (use `groups`) or ``automatic`` (balance by survey
    scores using `group_size`). Any previous groups of the project are
    replaced.
    """
    svc = services.GroupingService(db)
    try:
        groups = svc.form(
            user, class_id, project_id, payload.mode,
            groups=[g.model_dump() for g in payload.groups],
            group_size=payload.group_size,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'groups': groups}


@app.get('/survey')
def get_survey(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {'ratings': services.SurveyService(db).get(user)}


@app.post('/survey')
def save_survey(payload: SurveyIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Save (or retake) the skills survey of the signed-in user."""
    try:
        services.SurveyService(db).save(user, [s.model_dump() for s in payload.skills])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'success': True}


@app.get('/user/tasks')
def list_tasks(request: Request, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Tasks of the signed-in user, soonest due first."""
    tasks = services.TaskService(db).list_tasks(user)
    return conditional_json(request, {'tasks': tasks})


@app.post('/user/tasks')
def create_task(payload: TaskIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        task = services.TaskService(db).create(
            user, payload.title, status=payload.status,
            due_date=payload.due_date, project_id=payload.project_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'task': task}


@app.patch('/user/tasks/{task_id}')
def update_task(task_id: int, payload: TaskUpdate, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    try:
        task = services.TaskService(db).update(user, task_id, payload.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'task': task}


@app.delete('/user/tasks/{task_id}')
def delete_task(task_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.TaskService(db).delete(user, task_id)
    return {'success': True}


@app.get('/activity')
def recent_activity(project_id: int, group_id: Optional[int] = None, limit: int = 5,
                    db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Latest activity of a project, optionally narrowed to one group."""
    svc = services.ActivityService(db)
    svc.require_project_access(user, project_id)
    try:
        entries = svc.recent(project_id, group_id=group_id, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'activity': entries}


@app.post('/activity')
def log_activity(payload: ActivityIn, db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    try:
        entry = services.ActivityService(db).log(
            user, payload.project_id, payload.group_id, payload.action_type,
            entity_id=payload.entity_id, entity_title=payload.entity_title,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'success': True, 'activity': entry}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}

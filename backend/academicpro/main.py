"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the AcademicPro backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Service errors are mapped to
status codes by the exception handlers registered below, and every
non-2xx body carries a human-readable `message`.

Endpoints implemented (all under /api):
- POST /users/signup, POST /users/login
- GET/PUT /users/profile, GET /users/lookup
- GET/POST /notes, GET/PUT/DELETE /notes/{id}
- GET/POST /courses, GET/PUT/DELETE /courses/{id}
- GET/POST /groups, GET/PUT/DELETE /groups/{id}
- POST/DELETE /groups/{id}/members
- POST /groups/{id}/discuss
- PUT /groups/{id}/assignment/status
- GET /dashboard/summary
"""

import json
import logging
import time
import uuid

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models, services
from .auth import get_current_user
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import NotFoundError, ServiceError
from .schemas import (
    AssignmentStatusIn, CourseIn, CourseUpdateIn, DiscussionIn, GroupDetailsIn, GroupIn,
    LoginIn, MemberIn, NoteIn, NoteUpdateIn, ProfileUpdateIn, SignupIn,
)

app = FastAPI(title="AcademicPro API")
logger = logging.getLogger("academicpro.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
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
    response: Response
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


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report schema failures as bad input, naming the first failing field."""
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "message": e.get("msg", "")}
        for e in exc.errors()
    ]
    first = errors[0] if errors else {"field": "", "message": "invalid request"}
    message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
    return JSONResponse(status_code=400, content={"message": message, "errors": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # the fault text stays in the log, never in the response
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


def _parse_id(raw: str, entity: str) -> int:
    """Parse a path identifier; malformed ids are reported as not found."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise NotFoundError(f"Invalid {entity} ID format.")
    if value < 1:
        raise NotFoundError(f"Invalid {entity} ID format.")
    return value


api = APIRouter(prefix="/api")


# ---------------------------------------------------------------- users

@api.post('/users/signup', status_code=201)
def signup(payload: SignupIn, db: Session = Depends(get_session)):
    """Create an account and return a bearer token with the display name."""
    auth = services.AuthService(db)
    user = auth.register(payload.first_name, payload.last_name, payload.email, payload.password, payload.confirm_password)
    return auth.session_payload(user)


@api.post('/users/login')
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 response.
    """
    auth = services.AuthService(db)
    user = auth.authenticate(payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return auth.session_payload(user)


@api.get('/users/profile')
def get_profile(user: models.User = Depends(get_current_user)):
    return services.AuthService.profile(user)


@api.put('/users/profile')
def update_profile(payload: ProfileUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Update the caller's profile and return it with a fresh token."""
    auth = services.AuthService(db)
    updated = auth.update_profile(user, payload.model_dump(exclude_unset=True))
    out = auth.profile(updated)
    out['access_token'] = auth.create_token(updated)
    return out


@api.get('/users/lookup')
def lookup_user(email: str = '', db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Resolve an email to a user id, used when inviting group members."""
    found = services.AuthService(db).lookup(email)
    return services.user_brief(found)


# ---------------------------------------------------------------- notes

@api.get('/notes')
def list_notes(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.NoteService(db).list_notes(user)


@api.post('/notes', status_code=201)
def create_note(payload: NoteIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.NoteService(db).create(user, payload.title, payload.content, payload.status)


@api.get('/notes/{note_id}')
def get_note(note_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.NoteService(db).get(user, _parse_id(note_id, 'note'))


@api.put('/notes/{note_id}')
def update_note(note_id: str, payload: NoteUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Update title, content or status. Unknown status values are rejected with 400."""
    return services.NoteService(db).update(user, _parse_id(note_id, 'note'), payload.model_dump(exclude_unset=True))


@api.delete('/notes/{note_id}')
def delete_note(note_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.NoteService(db).delete(user, _parse_id(note_id, 'note'))
    return {'message': 'Note removed'}


# ---------------------------------------------------------------- courses

@api.get('/courses')
def list_courses(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.CourseService(db).list_courses()


@api.post('/courses', status_code=201)
def create_course(payload: CourseIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.CourseService(db).create(user, payload.title, payload.code, payload.description)


@api.get('/courses/{course_id}')
def get_course(course_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.CourseService(db).get(_parse_id(course_id, 'course'))


@api.put('/courses/{course_id}')
def update_course(course_id: str, payload: CourseUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Edit a course. Only the user who added it may do so."""
    return services.CourseService(db).update(user, _parse_id(course_id, 'course'), payload.model_dump(exclude_unset=True))


@api.delete('/courses/{course_id}')
def delete_course(course_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.CourseService(db).delete(user, _parse_id(course_id, 'course'))
    return {'message': 'Course removed successfully'}


# ---------------------------------------------------------------- groups

@api.get('/groups')
def list_groups(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Groups the caller is a member of, newest first."""
    return services.GroupService(db).list_groups(user)


@api.post('/groups', status_code=201)
def create_group(payload: GroupIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Create a group; the caller becomes its admin and first member."""
    return services.GroupService(db).create(user, payload.name, payload.description)


@api.get('/groups/{group_id}')
def get_group(group_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.GroupService(db).get(user, _parse_id(group_id, 'group'))


@api.put('/groups/{group_id}')
def update_group_details(group_id: str, payload: GroupDetailsIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Update assignment title, deadline and description (admin only).

    Send the `version` from the last read to have the update rejected
    with 409 if someone else changed the group in between.
    """
    return services.GroupService(db).update_details(user, _parse_id(group_id, 'group'), payload.model_dump(exclude_unset=True))


@api.delete('/groups/{group_id}')
def delete_group(group_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.GroupService(db).delete(user, _parse_id(group_id, 'group'))
    return {'message': 'Group removed'}


@api.put('/groups/{group_id}/assignment/status')
def update_assignment_status(group_id: str, payload: AssignmentStatusIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Change the project status. Admin only."""
    svc = services.GroupService(db)
    return svc.update_status(user, _parse_id(group_id, 'group'), payload.assignment_status, payload.version)


@api.post('/groups/{group_id}/members')
def add_member(group_id: str, payload: MemberIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.GroupService(db).add_member(user, _parse_id(group_id, 'group'), payload.member_id)


@api.delete('/groups/{group_id}/members')
def remove_member(group_id: str, payload: MemberIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Remove a member (admin only). The admin can never be removed."""
    services.GroupService(db).remove_member(user, _parse_id(group_id, 'group'), payload.member_id)
    return {'message': 'Member removed successfully'}


@api.post('/groups/{group_id}/discuss', status_code=201)
def add_discussion(group_id: str, payload: DiscussionIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Post to the group's discussion log; returns only the new entry."""
    return services.GroupService(db).add_discussion(user, _parse_id(group_id, 'group'), payload.text)


# ---------------------------------------------------------------- dashboard

@api.get('/dashboard/summary')
def dashboard_summary(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Task and group counters for the caller's overview page."""
    return services.DashboardService(db).summary(user)


app.include_router(api)


@app.get("/")
def home():
    return {"message": "AcademicPro API is running..."}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}

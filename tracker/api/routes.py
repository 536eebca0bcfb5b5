"""
HTTP routes for the workflow engine.

Handlers are thin: validate the payload shape, call one workflow method
with the authenticated Principal, map the Result with `respond`.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, File, Query, UploadFile
from pydantic import BaseModel, Field

from tracker.api.responses import respond
from tracker.auth.capabilities import Capability
from tracker.auth.context import Principal
from tracker.auth.policies import get_engine, get_principal, require
from tracker.core.models import Priority, Role, Status
from tracker.engine import Engine
from tracker.workflow.base import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter()

PageSize = Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)]
Cursor = Annotated[int | None, Query(ge=1)]


# =============================================================================
# Request Models
# =============================================================================


class CreateProjectRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = ""


class EditProjectRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None


class MemberRequest(BaseModel):
    user_id: int


class TransferOwnershipRequest(BaseModel):
    new_owner_id: int


class CreateTicketRequest(BaseModel):
    project_id: int
    name: str = Field(min_length=1, max_length=100)
    description: str = ""
    priority: Priority = Priority.MEDIUM


class EditTicketRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    priority: Priority | None = None
    status: Status | None = None


class AssignRequest(BaseModel):
    user_ids: list[int] = Field(min_length=1)


class CommentRequest(BaseModel):
    text: str = Field(min_length=1, max_length=5000)


class RoleChangeRequest(BaseModel):
    role: Role


class EditUserRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    username: str | None = Field(None, min_length=3, max_length=20, pattern=r"^[A-Za-z0-9_]+$")
    password: str | None = Field(None, min_length=8)


# =============================================================================
# Projects & Membership
# =============================================================================


@router.post("/projects", status_code=201, tags=["projects"])
async def create_project(
    data: CreateProjectRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    result = await engine.projects.create_project(principal, data.name, data.description)
    return respond(result, "Project created", status_code=201)


@router.get("/projects", tags=["projects"])
async def list_my_projects(
    limit: PageSize = DEFAULT_PAGE_SIZE,
    cursor: Cursor = None,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.projects.list_user_projects(principal, limit=limit, cursor=cursor))


# Literal paths must be registered before /projects/{project_id}
@router.get("/projects/all", tags=["projects"])
async def list_all_projects(
    contains: Annotated[str, Query(max_length=100)] = "",
    limit: PageSize = DEFAULT_PAGE_SIZE,
    cursor: Cursor = None,
    principal: Principal = Depends(require(Capability.PROJECT_ADMINISTER)),
    engine: Engine = Depends(get_engine),
):
    result = await engine.projects.list_projects(principal, contains=contains, limit=limit, cursor=cursor)
    return respond(result)


@router.get("/projects/by-name/{owner_username}/{name}", tags=["projects"])
async def get_project_by_name(
    owner_username: str,
    name: str,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.projects.get_project_by_name(principal, owner_username, name))


@router.get("/projects/{project_id}", tags=["projects"])
async def get_project(
    project_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.projects.get_project(principal, project_id))


@router.patch("/projects/{project_id}", tags=["projects"])
async def edit_project(
    project_id: int,
    data: EditProjectRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    result = await engine.projects.edit_project(principal, project_id, data.name, data.description)
    return respond(result, "Project updated")


@router.delete("/projects/{project_id}", tags=["projects"])
async def delete_project(
    project_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.projects.delete_project(principal, project_id), "Project deleted")


@router.get("/projects/{project_id}/tickets", tags=["projects"])
async def list_project_tickets(
    project_id: int,
    status: Status | None = None,
    limit: PageSize = DEFAULT_PAGE_SIZE,
    cursor: Cursor = None,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    result = await engine.tickets.list_tickets(principal, project_id, status=status, limit=limit, cursor=cursor)
    return respond(result)


@router.get("/projects/{project_id}/activities", tags=["projects"])
async def list_project_activities(
    project_id: int,
    limit: PageSize = DEFAULT_PAGE_SIZE,
    cursor: Cursor = None,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.projects.list_activities(principal, project_id, limit=limit, cursor=cursor))


@router.post("/projects/{project_id}/members", tags=["projects"])
async def add_member(
    project_id: int,
    data: MemberRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.membership.add_member(principal, project_id, data.user_id), "Member added")


@router.delete("/projects/{project_id}/members/{user_id}", tags=["projects"])
async def remove_member(
    project_id: int,
    user_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.membership.remove_member(principal, project_id, user_id), "Member removed")


@router.post("/projects/{project_id}/leave", tags=["projects"])
async def leave_project(
    project_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.membership.leave(principal, project_id), "Left project")


@router.post("/projects/{project_id}/transfer", tags=["projects"])
async def transfer_ownership(
    project_id: int,
    data: TransferOwnershipRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    result = await engine.membership.transfer_ownership(principal, project_id, data.new_owner_id)
    return respond(result, "Ownership transferred")


# =============================================================================
# Tickets
# =============================================================================


@router.post("/tickets", status_code=201, tags=["tickets"])
async def create_ticket(
    data: CreateTicketRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    result = await engine.tickets.create_ticket(
        principal, data.project_id, data.name, data.description, data.priority
    )
    return respond(result, "Ticket created", status_code=201)


@router.get("/tickets/{ticket_id}", tags=["tickets"])
async def get_ticket(
    ticket_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.tickets.get_ticket(principal, ticket_id))


@router.patch("/tickets/{ticket_id}", tags=["tickets"])
async def edit_ticket(
    ticket_id: int,
    data: EditTicketRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    result = await engine.tickets.edit_ticket(
        principal,
        ticket_id,
        name=data.name,
        description=data.description,
        priority=data.priority,
        status=data.status,
    )
    return respond(result, "Ticket updated")


@router.post("/tickets/{ticket_id}/assignees", tags=["tickets"])
async def assign_ticket(
    ticket_id: int,
    data: AssignRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.tickets.assign(principal, ticket_id, data.user_ids), "Ticket assigned")


@router.delete("/tickets/{ticket_id}/assignees/{user_id}", tags=["tickets"])
async def unassign_ticket(
    ticket_id: int,
    user_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.tickets.unassign(principal, ticket_id, user_id), "Ticket unassigned")


# =============================================================================
# Comments
# =============================================================================


@router.get("/tickets/{ticket_id}/comments", tags=["comments"])
async def list_comments(
    ticket_id: int,
    limit: PageSize = DEFAULT_PAGE_SIZE,
    cursor: Cursor = None,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.comments.list_comments(principal, ticket_id, limit=limit, cursor=cursor))


@router.post("/tickets/{ticket_id}/comments", status_code=201, tags=["comments"])
async def create_comment(
    ticket_id: int,
    data: CommentRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    result = await engine.comments.create_comment(principal, ticket_id, data.text)
    return respond(result, "Comment created", status_code=201)


@router.patch("/comments/{comment_id}", tags=["comments"])
async def edit_comment(
    comment_id: int,
    data: CommentRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.comments.edit_comment(principal, comment_id, data.text), "Comment updated")


@router.delete("/comments/{comment_id}", tags=["comments"])
async def delete_comment(
    comment_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.comments.delete_comment(principal, comment_id), "Comment deleted")


# =============================================================================
# Files
# =============================================================================


@router.post("/tickets/{ticket_id}/files", status_code=201, tags=["files"])
async def upload_file(
    ticket_id: int,
    file: UploadFile = File(...),
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    data = await file.read()
    result = await engine.files.attach_file(
        principal,
        ticket_id,
        file.filename or "upload",
        data,
        file.content_type or "application/octet-stream",
    )
    return respond(result, "Uploaded file successfully", status_code=201)


@router.get("/tickets/{ticket_id}/files", tags=["files"])
async def list_files(
    ticket_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.files.list_files(principal, ticket_id))


@router.get("/files/{file_id}", tags=["files"])
async def get_file(
    file_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.files.get_file(principal, file_id))


@router.delete("/files/{file_id}", tags=["files"])
async def delete_file(
    file_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.files.delete_file(principal, file_id), "File deleted successfully")


# =============================================================================
# Role change requests
# =============================================================================


@router.post("/roles/requests", status_code=201, tags=["roles"])
async def request_role(
    data: RoleChangeRequest,
    principal: Principal = Depends(require(Capability.ROLE_REQUEST)),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.roles.request(principal, data.role), "Role change requested", status_code=201)


@router.get("/roles/requests", tags=["roles"])
async def list_role_requests(
    limit: PageSize = DEFAULT_PAGE_SIZE,
    cursor: Cursor = None,
    principal: Principal = Depends(require(Capability.ROLE_REVIEW)),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.roles.list_requests(principal, limit=limit, cursor=cursor))


@router.post("/roles/requests/{request_id}/approve", tags=["roles"])
async def approve_role_request(
    request_id: int,
    principal: Principal = Depends(require(Capability.ROLE_REVIEW)),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.roles.approve(principal, request_id), "Role change approved")


@router.post("/roles/requests/{request_id}/reject", tags=["roles"])
async def reject_role_request(
    request_id: int,
    principal: Principal = Depends(require(Capability.ROLE_REVIEW)),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.roles.reject(principal, request_id), "Role change rejected")


@router.delete("/roles/requests/{request_id}", tags=["roles"])
async def cancel_role_request(
    request_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.roles.cancel(principal, request_id), "Request cancelled")


# =============================================================================
# Users
# =============================================================================


@router.get("/users", tags=["users"])
async def list_users(
    limit: PageSize = DEFAULT_PAGE_SIZE,
    cursor: Cursor = None,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.users.list_users(principal, limit=limit, cursor=cursor))


@router.get("/users/by-username/{username}", tags=["users"])
async def get_user_by_username(
    username: str,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.users.get_user_by_username(principal, username))


@router.get("/users/{user_id}/comments", tags=["users"])
async def list_user_comments(
    user_id: int,
    limit: PageSize = DEFAULT_PAGE_SIZE,
    cursor: Cursor = None,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    result = await engine.users.list_user_comments(principal, user_id, limit=limit, cursor=cursor)
    return respond(result)


@router.get("/users/{user_id}", tags=["users"])
async def get_user(
    user_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.users.get_user(principal, user_id))


@router.get("/users/{user_id}/projects", tags=["users"])
async def list_user_projects(
    user_id: int,
    limit: PageSize = DEFAULT_PAGE_SIZE,
    cursor: Cursor = None,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    result = await engine.projects.list_user_projects(principal, user_id=user_id, limit=limit, cursor=cursor)
    return respond(result)


@router.get("/users/{user_id}/request", tags=["users"])
async def get_user_request(
    user_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.roles.get_request_for_user(principal, user_id))


@router.patch("/users/{user_id}", tags=["users"])
async def edit_user(
    user_id: int,
    data: EditUserRequest,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    result = await engine.users.edit_user(
        principal, user_id, name=data.name, username=data.username, password=data.password
    )
    return respond(result, "User updated")


@router.delete("/users/{user_id}", tags=["users"])
async def delete_user(
    user_id: int,
    principal: Principal = Depends(get_principal),
    engine: Engine = Depends(get_engine),
):
    return respond(await engine.users.delete_user(principal, user_id), "User deleted")

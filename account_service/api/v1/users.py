"""User account endpoints: CRUD, search, statistics, activation, avatar, password, export."""

from typing import Annotated

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status

from account_service.api.deps import get_account_service, get_optional_user, require
from account_service.core.config import get_settings
from account_service.models.user import Role
from account_service.schemas.auth import CurrentUser
from account_service.schemas.common import ApiResponse, PageResponse
from account_service.schemas.user import (
    BulkDeleteRequest,
    ChangePasswordRequest,
    UserCreate,
    UserResponse,
    UserStats,
    UserUpdate,
)
from account_service.services.accounts import MAX_PAGE_SIZE, AccountService
from account_service.services.authorization import Operation

router = APIRouter()

Service = Annotated[AccountService, Depends(get_account_service)]
Page = Annotated[int, Query(ge=0, description="Zero-based page number")]
Size = Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE, description="Items per page")]
Sort = Annotated[str | None, Query(description="field[,asc|desc]", examples=["created_at,desc"])]

# Static paths are declared before /{user_id} so they are not captured by it.


@router.get("", response_model=PageResponse[UserResponse])
def list_users(
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.LIST_USERS, None))],
    active: bool | None = None,
    role: Role | None = None,
    search: Annotated[str | None, Query(max_length=100)] = None,
    page: Page = 0,
    size: Size = 20,
    sort: Sort = None,
) -> PageResponse[UserResponse]:
    """Paged list with optional active / role / free-text filters."""
    return service.list_users(active=active, role=role, search=search, page=page, size=size, sort=sort)


@router.get("/search", response_model=PageResponse[UserResponse])
def search_users(
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.SEARCH_USERS, None))],
    first_name: str | None = None,
    last_name: str | None = None,
    email: str | None = None,
    page: Page = 0,
    size: Size = 20,
    sort: Sort = None,
) -> PageResponse[UserResponse]:
    return service.search_users(
        first_name=first_name,
        last_name=last_name,
        email=email,
        page=page,
        size=size,
        sort=sort,
    )


@router.get("/stats", response_model=UserStats)
def get_statistics(
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.VIEW_STATISTICS, None))],
) -> UserStats:
    return service.statistics()


@router.get("/roles", response_model=list[Role])
def list_roles(
    _caller: Annotated[CurrentUser, Depends(require(Operation.LIST_ROLES, None))],
) -> list[Role]:
    return list(Role)


@router.get("/export")
def export_users(
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.EXPORT_USERS, None))],
    export_format: Annotated[str, Query(alias="format")] = "CSV",
) -> Response:
    """Download every account as CSV, JSON or EXCEL (served as CSV)."""
    payload = service.export(export_format)
    return Response(
        content=payload.content,
        media_type=payload.media_type,
        headers={"Content-Disposition": f'attachment; filename="{payload.filename}"'},
    )


@router.post("/bulk-delete", status_code=status.HTTP_204_NO_CONTENT)
def bulk_delete(
    body: BulkDeleteRequest,
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.BULK_DELETE, None))],
) -> Response:
    """Delete the listed accounts; ids that did not exist come back in X-Skipped-Ids."""
    result = service.bulk_delete(body.ids)
    headers = {}
    if result.skipped_ids:
        headers["X-Skipped-Ids"] = ",".join(str(i) for i in result.skipped_ids)
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=headers)


@router.get("/username/{username}", response_model=UserResponse)
def get_user_by_username(username: str, service: Service) -> UserResponse:
    return service.get_by_username(username)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: UserCreate,
    service: Service,
    caller: Annotated[CurrentUser | None, Depends(get_optional_user)],
) -> UserResponse:
    """Open registration; assigning MODERATOR or ADMIN needs an admin caller."""
    return service.register(body, caller=caller)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.VIEW_USER))],
) -> UserResponse:
    return service.get_user(user_id)


@router.put("/{user_id}", response_model=UserResponse)
@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    body: UserUpdate,
    service: Service,
    caller: Annotated[CurrentUser, Depends(require(Operation.UPDATE_USER))],
) -> UserResponse:
    """Partial update; send `version` to reject the write if someone else changed the account."""
    return service.update_profile(user_id, body, caller=caller)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.DELETE_USER))],
) -> Response:
    service.delete(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{user_id}/activate", response_model=UserResponse)
def activate_user(
    user_id: int,
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.ACTIVATE_USER))],
) -> UserResponse:
    return service.activate(user_id)


@router.post("/{user_id}/deactivate", response_model=UserResponse)
def deactivate_user(
    user_id: int,
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.DEACTIVATE_USER))],
) -> UserResponse:
    return service.deactivate(user_id)


@router.post("/{user_id}/upload-avatar", response_model=UserResponse)
def upload_avatar(
    user_id: int,
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.UPLOAD_AVATAR))],
    file: Annotated[UploadFile, File(description="JPEG, PNG, GIF or WebP image")],
) -> UserResponse:
    # One byte past the limit is enough to reject oversize uploads.
    content = file.file.read(get_settings().AVATAR_MAX_BYTES + 1)
    return service.update_avatar(user_id, content, file.content_type, file.filename)


@router.post("/{user_id}/change-password", response_model=ApiResponse[None])
def change_password(
    user_id: int,
    body: ChangePasswordRequest,
    service: Service,
    _caller: Annotated[CurrentUser, Depends(require(Operation.CHANGE_PASSWORD))],
) -> ApiResponse[None]:
    service.change_password(
        user_id, body.current_password, body.new_password, body.confirm_password
    )
    return ApiResponse[None](message="Password changed successfully")

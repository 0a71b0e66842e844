from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from virtualqueue.api.deps import get_auth_context, get_current_user, require_admin
from virtualqueue.core.exceptions import Forbidden
from virtualqueue.db.session import get_db
from virtualqueue.models.user import User, UserRole
from virtualqueue.schemas.user import PasswordUpdate, UserCreate, UserPatch, UserResponse, UserUpdate
from virtualqueue.services.auth_service import AuthContext
from virtualqueue.services.user_service import UserService
from virtualqueue.utils.response import paginated_response, success

router = APIRouter()


def _serialize(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump(by_alias=True, mode="json")


def _ensure_self_or_admin(current_user: User, user_id: int) -> None:
    if current_user.id != user_id and not current_user.is_admin:
        raise Forbidden("Access denied")


def _ensure_role_change_allowed(current_user: User, target: Optional[User], role: Optional[UserRole]) -> None:
    """Only a superadmin may change roles."""
    if role is None:
        return
    current_role = target.role if target is not None else UserRole.USER
    if role != current_role and current_user.role != UserRole.SUPERADMIN:
        raise Forbidden("Only a superadmin can change user roles")


def _ensure_can_manage(current_user: User, target: User) -> None:
    """Admin and superadmin accounts are managed by a superadmin or by themselves."""
    if target.is_admin and current_user.id != target.id and current_user.role != UserRole.SUPERADMIN:
        raise Forbidden("Only a superadmin can manage admin accounts")


@router.get("/", response_model=dict, summary="View all users")
def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=255),
    role: Optional[UserRole] = Query(None),
    sort_by: Literal["createdAt", "fullName", "email"] = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    users, total = UserService.list_users(
        db,
        page=page,
        limit=limit,
        search=search,
        role=role,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return paginated_response(request, [_serialize(user) for user in users], total, page, limit)


@router.get("/{user_id}", response_model=dict, summary="View user by ID")
def get_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_self_or_admin(current_user, user_id)
    user = UserService.get_user_or_404(db, user_id)
    return success(request, data=_serialize(user), message="User retrieved")


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED, summary="Create a new user")
def create_user(
    request: Request,
    user_in: UserCreate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    _ensure_role_change_allowed(current_user, None, user_in.role)
    user = UserService.create_user(
        db,
        email=user_in.email,
        password=user_in.password,
        full_name=user_in.full_name,
        phone=user_in.phone,
        photo=user_in.photo,
        role=user_in.role,
    )
    return success(
        request,
        data=_serialize(user),
        message="User created successfully.",
        status_code=status.HTTP_201_CREATED,
    )


@router.put("/{user_id}", response_model=dict, summary="Replace all user data")
def replace_user(
    request: Request,
    user_id: int,
    user_in: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_self_or_admin(current_user, user_id)
    user = UserService.get_user_or_404(db, user_id)
    _ensure_can_manage(current_user, user)
    _ensure_role_change_allowed(current_user, user, user_in.role)

    changes = user_in.model_dump()
    if changes.get("role") is None:
        changes.pop("role", None)
    user = UserService.update_user(db, user, changes)
    return success(request, data=_serialize(user), message="User updated successfully.")


@router.patch("/{user_id}", response_model=dict, summary="Update specific user fields")
def patch_user(
    request: Request,
    user_id: int,
    user_in: UserPatch,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_self_or_admin(current_user, user_id)
    user = UserService.get_user_or_404(db, user_id)
    _ensure_can_manage(current_user, user)
    _ensure_role_change_allowed(current_user, user, user_in.role)

    changes = user_in.model_dump(exclude_unset=True)
    for required in ("email", "full_name", "role"):
        if required in changes and changes[required] is None:
            changes.pop(required)
    user = UserService.update_user(db, user, changes)
    return success(request, data=_serialize(user), message="User updated successfully.")


@router.put("/{user_id}/password", response_model=dict, summary="Update user password")
def update_password(
    request: Request,
    user_id: int,
    payload: PasswordUpdate,
    context: AuthContext = Depends(get_auth_context),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_self_or_admin(current_user, user_id)
    user = UserService.get_user_or_404(db, user_id)
    _ensure_can_manage(current_user, user)
    # The caller keeps their own session when changing their own password.
    keep = context.session_id if current_user.id == user.id else None
    terminated = UserService.change_password(
        db,
        user,
        payload.old_password,
        payload.password,
        keep_session_id=keep,
    )
    return success(
        request,
        data={"sessionsTerminated": terminated},
        message="User password updated successfully.",
    )


@router.delete("/{user_id}", response_model=dict, summary="Delete a user")
def delete_user(
    request: Request,
    user_id: int,
    permanent: bool = Query(False, description="Whether to permanently delete the user."),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Soft delete by default; permanent when ``?permanent=true``."""
    user = UserService.get_user_or_404(db, user_id)
    _ensure_can_manage(current_user, user)
    if permanent:
        UserService.permanent_delete(db, user)
        return success(request, message="User permanently deleted.")

    UserService.soft_delete(db, user)
    return success(request, message="User deleted.")


@router.post("/{user_id}/restore", response_model=dict, summary="Restore a soft-deleted user")
def restore_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = UserService.get_user_or_404(db, user_id, include_deleted=True)
    _ensure_can_manage(current_user, user)
    user = UserService.restore(db, user)
    return success(request, data=_serialize(user), message="User restored successfully.")

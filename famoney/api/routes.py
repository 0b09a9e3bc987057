from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response

from famoney.api.schemas import (
    AuthResponse,
    CategoryResponse,
    CreateCategoryRequest,
    CreateExpenseRequest,
    CreateLedgerRequest,
    Envelope,
    ExpenseCreatorResponse,
    ExpenseResponse,
    InviteMemberRequest,
    LedgerResponse,
    LoginRequest,
    MemberResponse,
    PageResponse,
    PasswordChangeRequest,
    SignupRequest,
    TokenRefreshRequest,
    UpdateExpenseRequest,
    UpdateLedgerRequest,
    UpdateMemberRoleRequest,
    UpdateUserRequest,
    UserResponse,
)
from famoney.logging import bind_principal, get_logger
from famoney.service.auth import TokenPair
from famoney.service.expenses import UNKNOWN_CREATOR, ExpenseDetail
from famoney.service.ledgers import LedgerSummary
from famoney.service.members import MemberView
from famoney.service.runtime import get_runtime
from famoney.storage.models import Category, Expense, Page, User

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise _http_error("unauthorized", "missing bearer token", status_code=401)
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _http_error("unauthorized", "malformed authorization header", status_code=401)
    return token.strip()


async def get_user(authorization: Optional[str] = Header(None)) -> User:
    """Resolve the calling principal from a stateless access token."""
    runtime = get_runtime()
    user = runtime.auth.current_user(_bearer_token(authorization))
    bind_principal(user.id)
    return user


# serializers

def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        profile_image=user.profile_image,
        created_at=user.created_at,
    )


def _auth_response(user: User, tokens: TokenPair) -> AuthResponse:
    return AuthResponse(
        user=_user_response(user),
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
    )


def _ledger_response(summary: LedgerSummary) -> LedgerResponse:
    ledger = summary.ledger
    return LedgerResponse(
        id=ledger.id,
        name=ledger.name,
        description=ledger.description,
        currency=ledger.currency,
        created_by=ledger.created_by,
        role=summary.role,
        member_count=summary.member_count,
        created_at=ledger.created_at,
        updated_at=ledger.updated_at,
    )


def _member_response(view: MemberView) -> MemberResponse:
    return MemberResponse(
        id=view.membership.id,
        user_id=view.user.id,
        email=view.user.email,
        name=view.user.name,
        profile_image=view.user.profile_image,
        role=view.role,
        joined_at=view.membership.joined_at,
        invited_by=view.membership.invited_by,
    )


def _category_response(category: Category) -> CategoryResponse:
    return CategoryResponse(
        id=category.id,
        name=category.name,
        color=category.color,
        icon=category.icon,
        is_default=category.is_default,
        ledger_id=category.ledger_id,
    )


def _expense_response(detail: ExpenseDetail) -> ExpenseResponse:
    expense, creator = detail.expense, detail.creator
    return ExpenseResponse(
        id=expense.id,
        ledger_id=expense.ledger_id,
        amount=expense.amount,
        description=expense.description,
        expense_date=expense.expense_date,
        category_id=expense.category_id,
        category=_category_response(detail.category) if detail.category else None,
        payment_method=expense.payment_method,
        created_by=expense.created_by,
        created_by_user=ExpenseCreatorResponse(
            id=expense.created_by,
            name=creator.name if creator else UNKNOWN_CREATOR,
            profile_image=creator.profile_image if creator else None,
        ),
        created_at=expense.created_at,
        updated_at=expense.updated_at,
    )


def _expense_data(expense: Expense) -> ExpenseResponse:
    (detail,) = get_runtime().expenses.describe([expense])
    return _expense_response(detail)


def _page_response(page: Page[Expense]) -> PageResponse:
    return PageResponse(
        items=[_expense_response(d) for d in get_runtime().expenses.describe(page.items)],
        page=page.page,
        size=page.size,
        total=page.total,
        total_pages=page.total_pages,
        first=page.is_first,
        last=page.is_last,
    )


# auth

@router.post("/auth/signup", response_model=Envelope, status_code=201, tags=["auth"])
async def signup(body: SignupRequest):
    """Create an account and return its first token pair."""
    runtime = get_runtime()
    user, tokens = runtime.auth.signup(body.email, body.password, body.name)
    return Envelope(status="ok", data=_auth_response(user, tokens))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Exchange email and password for a new token pair.

    Raises:
        401: If the account is unknown or the password is wrong
    """
    runtime = get_runtime()
    user, tokens = runtime.auth.login(body.email, body.password)
    return Envelope(status="ok", data=_auth_response(user, tokens))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(body: TokenRefreshRequest):
    """Rotate a refresh token. The presented token is consumed and cannot be replayed."""
    runtime = get_runtime()
    user, tokens = runtime.auth.refresh(body.refresh_token)
    return Envelope(status="ok", data=_auth_response(user, tokens))


@router.post("/auth/logout", status_code=204, tags=["auth"])
async def logout(principal: User = Depends(get_user)):
    runtime = get_runtime()
    revoked = runtime.auth.logout(principal.id)
    logger.info("user_logged_out", user_id=principal.id, revoked=revoked)
    return Response(status_code=204)


# users

@router.get("/users/me", response_model=Envelope, tags=["users"])
async def get_me(principal: User = Depends(get_user)):
    return Envelope(status="ok", data=_user_response(principal))


@router.patch("/users/me", response_model=Envelope, tags=["users"])
async def update_me(body: UpdateUserRequest, principal: User = Depends(get_user)):
    runtime = get_runtime()
    user = runtime.users.update_profile(
        principal.id, **body.model_dump(exclude_unset=True)
    )
    return Envelope(status="ok", data=_user_response(user))


@router.patch("/users/me/password", status_code=204, tags=["users"])
async def change_password(body: PasswordChangeRequest, principal: User = Depends(get_user)):
    """Change the password and revoke every refresh token of the account."""
    runtime = get_runtime()
    runtime.users.change_password(principal.id, body.current_password, body.new_password)
    return Response(status_code=204)


@router.delete("/users/me", status_code=204, tags=["users"])
async def delete_me(principal: User = Depends(get_user)):
    runtime = get_runtime()
    runtime.users.delete_account(principal.id)
    return Response(status_code=204)


# ledgers

@router.post("/ledgers", response_model=Envelope, status_code=201, tags=["ledgers"])
async def create_ledger(body: CreateLedgerRequest, principal: User = Depends(get_user)):
    runtime = get_runtime()
    summary = runtime.ledgers.create_ledger(
        principal.id, body.name, description=body.description, currency=body.currency
    )
    return Envelope(status="ok", data=_ledger_response(summary))


@router.get("/ledgers", response_model=Envelope, tags=["ledgers"])
async def list_ledgers(principal: User = Depends(get_user)):
    runtime = get_runtime()
    summaries = runtime.ledgers.list_ledgers(principal.id)
    return Envelope(status="ok", data=[_ledger_response(s) for s in summaries])


@router.get("/ledgers/{ledger_id}", response_model=Envelope, tags=["ledgers"])
async def get_ledger(ledger_id: str, principal: User = Depends(get_user)):
    runtime = get_runtime()
    return Envelope(
        status="ok", data=_ledger_response(runtime.ledgers.get_ledger(principal.id, ledger_id))
    )


@router.patch("/ledgers/{ledger_id}", response_model=Envelope, tags=["ledgers"])
async def update_ledger(
    ledger_id: str, body: UpdateLedgerRequest, principal: User = Depends(get_user)
):
    runtime = get_runtime()
    summary = runtime.ledgers.update_ledger(
        principal.id, ledger_id, **body.model_dump(exclude_unset=True)
    )
    return Envelope(status="ok", data=_ledger_response(summary))


@router.delete("/ledgers/{ledger_id}", status_code=204, tags=["ledgers"])
async def delete_ledger(ledger_id: str, principal: User = Depends(get_user)):
    runtime = get_runtime()
    runtime.ledgers.delete_ledger(principal.id, ledger_id)
    return Response(status_code=204)


# members

@router.get("/ledgers/{ledger_id}/members", response_model=Envelope, tags=["members"])
async def list_members(ledger_id: str, principal: User = Depends(get_user)):
    runtime = get_runtime()
    views = runtime.members.list_members(principal.id, ledger_id)
    return Envelope(status="ok", data=[_member_response(v) for v in views])


@router.post(
    "/ledgers/{ledger_id}/members/invite",
    response_model=Envelope,
    status_code=201,
    tags=["members"],
)
async def invite_member(
    ledger_id: str, body: InviteMemberRequest, principal: User = Depends(get_user)
):
    runtime = get_runtime()
    view = runtime.members.invite_member(principal.id, ledger_id, body.email, body.role)
    return Envelope(status="ok", data=_member_response(view))


@router.patch(
    "/ledgers/{ledger_id}/members/{member_id}", response_model=Envelope, tags=["members"]
)
async def update_member_role(
    ledger_id: str,
    member_id: str,
    body: UpdateMemberRoleRequest,
    principal: User = Depends(get_user),
):
    runtime = get_runtime()
    view = runtime.members.update_member_role(principal.id, ledger_id, member_id, body.role)
    return Envelope(status="ok", data=_member_response(view))


@router.delete(
    "/ledgers/{ledger_id}/members/{member_id}", status_code=204, tags=["members"]
)
async def remove_member(ledger_id: str, member_id: str, principal: User = Depends(get_user)):
    runtime = get_runtime()
    runtime.members.remove_member(principal.id, ledger_id, member_id)
    return Response(status_code=204)


# categories

@router.get("/ledgers/{ledger_id}/categories", response_model=Envelope, tags=["categories"])
async def list_categories(ledger_id: str, principal: User = Depends(get_user)):
    runtime = get_runtime()
    categories = runtime.categories.list_categories(principal.id, ledger_id)
    return Envelope(status="ok", data=[_category_response(c) for c in categories])


@router.post(
    "/ledgers/{ledger_id}/categories",
    response_model=Envelope,
    status_code=201,
    tags=["categories"],
)
async def create_category(
    ledger_id: str, body: CreateCategoryRequest, principal: User = Depends(get_user)
):
    runtime = get_runtime()
    category = runtime.categories.create_category(
        principal.id, ledger_id, body.name, color=body.color, icon=body.icon
    )
    return Envelope(status="ok", data=_category_response(category))


@router.delete(
    "/ledgers/{ledger_id}/categories/{category_id}", status_code=204, tags=["categories"]
)
async def delete_category(
    ledger_id: str, category_id: str, principal: User = Depends(get_user)
):
    runtime = get_runtime()
    runtime.categories.delete_category(principal.id, ledger_id, category_id)
    return Response(status_code=204)


# expenses

@router.get("/ledgers/{ledger_id}/expenses", response_model=Envelope, tags=["expenses"])
async def list_expenses(
    ledger_id: str,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    category_id: Optional[str] = Query(None),
    page: int = Query(0, ge=0),
    size: Optional[int] = Query(None, ge=1, description="Page size; defaults to DEFAULT_PAGE_SIZE"),
    principal: User = Depends(get_user),
):
    """List live expenses, newest expense date first."""
    runtime = get_runtime()
    result = runtime.expenses.list_expenses(
        principal.id,
        ledger_id,
        start_date=start_date,
        end_date=end_date,
        category_id=category_id,
        page=page,
        size=size,
    )
    return Envelope(status="ok", data=_page_response(result))


@router.post(
    "/ledgers/{ledger_id}/expenses",
    response_model=Envelope,
    status_code=201,
    tags=["expenses"],
)
async def create_expense(
    ledger_id: str, body: CreateExpenseRequest, principal: User = Depends(get_user)
):
    runtime = get_runtime()
    expense = runtime.expenses.create_expense(
        principal.id,
        ledger_id,
        amount=body.amount,
        description=body.description,
        expense_date=body.expense_date,
        category_id=body.category_id,
        payment_method=body.payment_method,
    )
    return Envelope(status="ok", data=_expense_data(expense))


@router.get(
    "/ledgers/{ledger_id}/expenses/{expense_id}", response_model=Envelope, tags=["expenses"]
)
async def get_expense(ledger_id: str, expense_id: str, principal: User = Depends(get_user)):
    runtime = get_runtime()
    expense = runtime.expenses.get_expense(principal.id, ledger_id, expense_id)
    return Envelope(status="ok", data=_expense_data(expense))


@router.patch(
    "/ledgers/{ledger_id}/expenses/{expense_id}", response_model=Envelope, tags=["expenses"]
)
async def update_expense(
    ledger_id: str,
    expense_id: str,
    body: UpdateExpenseRequest,
    principal: User = Depends(get_user),
):
    runtime = get_runtime()
    expense = runtime.expenses.update_expense(
        principal.id, ledger_id, expense_id, **body.model_dump(exclude_unset=True)
    )
    return Envelope(status="ok", data=_expense_data(expense))


@router.delete(
    "/ledgers/{ledger_id}/expenses/{expense_id}", status_code=204, tags=["expenses"]
)
async def delete_expense(ledger_id: str, expense_id: str, principal: User = Depends(get_user)):
    runtime = get_runtime()
    runtime.expenses.delete_expense(principal.id, ledger_id, expense_id)
    return Response(status_code=204)

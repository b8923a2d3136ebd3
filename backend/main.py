"""
Talent Payout Dashboard: FastAPI application.

Admin endpoints (role admin):
  GET/POST   /api/admin/talents                      roster
  PATCH/DEL  /api/admin/talents/{talent_id}
  GET/POST   /api/admin/talents/{talent_id}/periods
  PATCH      /api/admin/periods/{period_id}
  POST       /api/admin/periods/{period_id}/duplicate
  GET        /api/admin/periods/{period_id}/platforms
  PUT/DEL    /api/admin/periods/{period_id}/platforms/{platform_id}
  GET/POST   /api/admin/periods/{period_id}/discounts
  PATCH      /api/admin/periods/{period_id}/discounts/{discount_id}
  GET        /api/admin/periods/{period_id}/payout

Talent endpoints (own periods; admins may use them on any period):
  GET        /api/me/periods
  GET        /api/me/periods/{period_id}/payout
  PATCH      /api/me/periods/{period_id}
  PUT        /api/me/periods/{period_id}/production
  GET        /api/me/periods/{period_id}/ledger

Shared:
  GET        /api/periods/{period_id}/statement       .xlsx download
  GET        /api/health

Every payout read runs the engine on the current snapshot (period_payout.py).

Error handling:
  - Missing/invalid session       → 401
  - Wrong role / foreign period   → 403
  - Unknown record                → 404
  - Request or state validation   → 422
  - Database unavailable          → 502
"""

import os
import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

import config
from models.schemas import (
    DiscountAmountUpdate,
    DiscountCreate,
    DiscountEntry,
    DiscountView,
    Identity,
    LedgerDetail,
    LinkConfig,
    Period,
    PeriodCreate,
    PeriodDuplicate,
    PeriodPayout,
    PeriodSettingsUpdate,
    PeriodUpdate,
    PlatformOption,
    ProductionSave,
    Role,
    Talent,
    TalentCreate,
    TalentUpdate,
)
from services import admin
from services.auth import AuthClient, AuthenticationError, resolve_identity
from services.excel_export import MEDIA_TYPE, generate_statement
from services.ledger import LedgerClient
from services.period_payout import build_period_payout
from services.repository import (
    PayoutRepository,
    RecordNotFound,
    RepositoryError,
    build_repository,
)

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Talent Payout Dashboard",
    description="Period payouts, discounts and goal tracking for managed talents",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Ensure output directory exists at startup
os.makedirs(config.OUTPUT_DIR, exist_ok=True)


# ===========================================================================
# Dependencies
# ===========================================================================

@lru_cache
def get_repository() -> PayoutRepository:
    return build_repository()


@lru_cache
def get_ledger() -> LedgerClient:
    return LedgerClient()


@lru_cache
def get_auth_client() -> AuthClient:
    return AuthClient()


def get_identity(
    authorization: Optional[str] = Header(None),
    repo: PayoutRepository = Depends(get_repository),
    auth: AuthClient = Depends(get_auth_client),
) -> Identity:
    """Resolve `Authorization: Bearer <token>` to an Identity."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthenticationError("Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    user = auth.get_user(token)
    return resolve_identity(user, repo)


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if identity.role != Role.ADMIN:
        raise _error(403, "Administrator role required")
    return identity


def require_talent(identity: Identity = Depends(get_identity)) -> Identity:
    if identity.role == Role.TALENT and identity.talent_id is None:
        raise _error(403, "No talent profile is linked to this account")
    return identity


def _error(status_code: int, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"status": "error", "message": message})


def _owned_period(repo: PayoutRepository, identity: Identity, period_id: str) -> Period:
    """Load a period the caller may see: admins see all, talents their own."""
    period = repo.get_period(period_id)
    if identity.role != Role.ADMIN and period.talent_id != identity.talent_id:
        logger.warning(f"User {identity.user_id} tried to access period {period_id}")
        raise _error(403, "This period does not belong to you")
    return period


# ===========================================================================
# Error mapping
# ===========================================================================

def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"status": "error", "message": message}},
    )


@app.exception_handler(AuthenticationError)
async def _authentication_error(request: Request, exc: AuthenticationError):
    return _error_response(401, str(exc))


@app.exception_handler(RecordNotFound)
async def _not_found(request: Request, exc: RecordNotFound):
    return _error_response(404, str(exc))


@app.exception_handler(admin.AdminValidationError)
async def _validation_error(request: Request, exc: admin.AdminValidationError):
    return _error_response(422, str(exc))


@app.exception_handler(RepositoryError)
async def _repository_error(request: Request, exc: RepositoryError):
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return _error_response(502, "The database is unavailable, please try again")


# ===========================================================================
# Admin: talents
# ===========================================================================

@app.get("/api/admin/talents", response_model=list[Talent])
def list_talents(
    include_inactive: bool = False,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.list_talents(repo, include_inactive)


@app.post("/api/admin/talents", response_model=Talent, status_code=201)
def create_talent(
    body: TalentCreate,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.create_talent(repo, body)


@app.patch("/api/admin/talents/{talent_id}", response_model=Talent)
def update_talent(
    talent_id: str,
    body: TalentUpdate,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.update_talent(repo, talent_id, body)


@app.delete("/api/admin/talents/{talent_id}", status_code=204)
def delete_talent(
    talent_id: str,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    admin.delete_talent(repo, talent_id)


# ===========================================================================
# Admin: periods
# ===========================================================================

@app.get("/api/admin/talents/{talent_id}/periods", response_model=list[Period])
def list_talent_periods(
    talent_id: str,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.list_periods(repo, talent_id)


@app.post("/api/admin/talents/{talent_id}/periods", response_model=Period, status_code=201)
def create_period(
    talent_id: str,
    body: PeriodCreate,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.create_period(repo, talent_id, body)


@app.patch("/api/admin/periods/{period_id}", response_model=Period)
def update_period(
    period_id: str,
    body: PeriodUpdate,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.update_period(repo, period_id, body)


@app.post("/api/admin/periods/{period_id}/duplicate", response_model=Period, status_code=201)
def duplicate_period(
    period_id: str,
    body: PeriodDuplicate,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.duplicate_period(repo, period_id, body)


# ===========================================================================
# Admin: platform links
# ===========================================================================

@app.get("/api/admin/periods/{period_id}/platforms", response_model=list[PlatformOption])
def list_platform_options(
    period_id: str,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.platform_options(repo, period_id)


@app.put("/api/admin/periods/{period_id}/platforms/{platform_id}", response_model=list[PlatformOption])
def configure_platform(
    period_id: str,
    platform_id: str,
    body: LinkConfig,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.configure_link(repo, period_id, platform_id, body)


@app.delete("/api/admin/periods/{period_id}/platforms/{platform_id}", response_model=list[PlatformOption])
def disable_platform(
    period_id: str,
    platform_id: str,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.disable_link(repo, period_id, platform_id)


# ===========================================================================
# Admin: discounts + payout
# ===========================================================================

@app.get("/api/admin/periods/{period_id}/discounts", response_model=DiscountView)
def get_discount_view(
    period_id: str,
    repo: PayoutRepository = Depends(get_repository),
    ledger: LedgerClient = Depends(get_ledger),
    _: Identity = Depends(require_admin),
):
    return admin.discount_view(repo, ledger, period_id)


@app.post("/api/admin/periods/{period_id}/discounts", response_model=DiscountEntry, status_code=201)
def create_discount(
    period_id: str,
    body: DiscountCreate,
    repo: PayoutRepository = Depends(get_repository),
    _: Identity = Depends(require_admin),
):
    return admin.create_discount(repo, period_id, body)


@app.patch("/api/admin/periods/{period_id}/discounts/{discount_id}", response_model=DiscountView)
def update_discount(
    period_id: str,
    discount_id: str,
    body: DiscountAmountUpdate,
    repo: PayoutRepository = Depends(get_repository),
    ledger: LedgerClient = Depends(get_ledger),
    _: Identity = Depends(require_admin),
):
    admin.update_discount_amount(repo, period_id, discount_id, body)
    return admin.discount_view(repo, ledger, period_id)


@app.get("/api/admin/periods/{period_id}/payout", response_model=PeriodPayout)
def get_admin_payout(
    period_id: str,
    repo: PayoutRepository = Depends(get_repository),
    ledger: LedgerClient = Depends(get_ledger),
    _: Identity = Depends(require_admin),
):
    return build_period_payout(repo, ledger, period_id)


# ===========================================================================
# Talent dashboard
# ===========================================================================

@app.get("/api/me/periods", response_model=list[Period])
def list_my_periods(
    repo: PayoutRepository = Depends(get_repository),
    identity: Identity = Depends(require_talent),
):
    if identity.talent_id is None:
        raise _error(404, "No talent profile is linked to this account")
    return repo.list_periods(identity.talent_id)


@app.get("/api/me/periods/{period_id}/payout", response_model=PeriodPayout)
def get_my_payout(
    period_id: str,
    repo: PayoutRepository = Depends(get_repository),
    ledger: LedgerClient = Depends(get_ledger),
    identity: Identity = Depends(require_talent),
):
    _owned_period(repo, identity, period_id)
    return build_period_payout(repo, ledger, period_id)


@app.patch("/api/me/periods/{period_id}", response_model=Period)
def update_my_period(
    period_id: str,
    body: PeriodSettingsUpdate,
    repo: PayoutRepository = Depends(get_repository),
    identity: Identity = Depends(require_talent),
):
    _owned_period(repo, identity, period_id)
    return admin.update_settings(repo, period_id, body)


@app.put("/api/me/periods/{period_id}/production", response_model=PeriodPayout)
def save_my_production(
    period_id: str,
    body: ProductionSave,
    repo: PayoutRepository = Depends(get_repository),
    ledger: LedgerClient = Depends(get_ledger),
    identity: Identity = Depends(require_talent),
):
    """Explicit save; returns the recomputed payout."""
    _owned_period(repo, identity, period_id)
    admin.save_production(repo, period_id, body)
    return build_period_payout(repo, ledger, period_id)


@app.get("/api/me/periods/{period_id}/ledger", response_model=LedgerDetail)
def get_my_ledger(
    period_id: str,
    repo: PayoutRepository = Depends(get_repository),
    ledger: LedgerClient = Depends(get_ledger),
    identity: Identity = Depends(require_talent),
):
    period = _owned_period(repo, identity, period_id)
    if not period.ledger_enabled or period.start_date is None or period.end_date is None:
        return LedgerDetail()
    talent = repo.get_talent(period.talent_id)
    return ledger.fetch_statement(talent.display_name, period.start_date, period.end_date)


# ===========================================================================
# Shared
# ===========================================================================

@app.get("/api/periods/{period_id}/statement")
def download_statement(
    period_id: str,
    repo: PayoutRepository = Depends(get_repository),
    ledger: LedgerClient = Depends(get_ledger),
    identity: Identity = Depends(get_identity),
):
    """Build and download the .xlsx payout statement of a period."""
    _owned_period(repo, identity, period_id)
    payout = build_period_payout(repo, ledger, period_id)
    filepath = generate_statement(payout)
    filename = os.path.basename(filepath)

    # filename= sets an RFC 5987 Content-Disposition for non-ASCII talent names
    return FileResponse(filepath, media_type=MEDIA_TYPE, filename=filename)


@app.get("/api/health")
def health():
    return {"status": "ok", "storage": config.STORAGE_BACKEND}


# ===========================================================================
# Main entry point
# ===========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

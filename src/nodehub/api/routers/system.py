from fastapi import APIRouter, Depends, Request

from nodehub.api.deps import get_store
from nodehub.api.responses import ok
from nodehub.schemas import LoginRequest
from nodehub.security import check_admin_key, require_admin_key
from nodehub.services.reconcile import utcnow_iso
from nodehub.settings import Settings, get_settings
from nodehub.store import KEY, DocumentStore, read_index
from nodehub.version import app_version

router = APIRouter(prefix="/api", tags=["system"])


@router.post("/auth/login")
async def login(request: Request, payload: LoginRequest, settings: Settings = Depends(get_settings)):
    check_admin_key(payload.admin_key, settings)
    return ok(request, {"ok": True})


@router.get("/system/status", dependencies=[Depends(require_admin_key)])
async def system_status(
    request: Request,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    return ok(
        request,
        {
            "app_version": app_version(),
            "app_env": settings.app_env,
            "store_available": True,
            "subscription_base_url": settings.subscription_base_url or str(request.base_url).rstrip("/"),
            "counts": {
                "nodes": len(await read_index(store, KEY.IDX_NODES)),
                "templates": len(await read_index(store, KEY.IDX_TEMPLATES)),
                "subscriptions": len(await read_index(store, KEY.IDX_SUBSCRIPTIONS)),
                "releases": len(await read_index(store, KEY.IDX_RELEASES)),
            },
            "now": utcnow_iso(),
        },
    )

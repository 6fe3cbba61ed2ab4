from fastapi import APIRouter, Depends, Request, status

from nodehub.api.deps import get_store
from nodehub.api.responses import ok
from nodehub.schemas import ReleaseCreate
from nodehub.security import require_admin_key
from nodehub.services import releases as svc
from nodehub.settings import Settings, get_settings
from nodehub.store import DocumentStore

router = APIRouter(prefix="/api/releases", tags=["releases"], dependencies=[Depends(require_admin_key)])


@router.get("")
async def list_releases(request: Request, store: DocumentStore = Depends(get_store)):
    return ok(request, await svc.list_releases(store))


@router.post("")
async def create_release(
    request: Request,
    payload: ReleaseCreate,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    release = await svc.create_release(store, payload.model_dump(), retention=settings.release_retention)
    return ok(request, release, status_code=status.HTTP_201_CREATED)

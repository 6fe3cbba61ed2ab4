from fastapi import APIRouter, Depends, Request, status

from nodehub.api.deps import get_store
from nodehub.api.responses import ok
from nodehub.schemas import SubscriptionCreate, SubscriptionUpdate
from nodehub.security import require_admin_key
from nodehub.services import subscriptions as svc
from nodehub.store import DocumentStore

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"], dependencies=[Depends(require_admin_key)])


@router.get("")
async def list_subscriptions(request: Request, store: DocumentStore = Depends(get_store)):
    return ok(request, await svc.list_subscriptions(store))


@router.post("")
async def create_subscription(request: Request, payload: SubscriptionCreate, store: DocumentStore = Depends(get_store)):
    subscription = await svc.create_subscription(store, payload.model_dump())
    return ok(request, subscription, status_code=status.HTTP_201_CREATED)


@router.get("/{token}")
async def get_subscription(request: Request, token: str, store: DocumentStore = Depends(get_store)):
    return ok(request, await svc.get_subscription(store, token))


@router.patch("/{token}")
async def update_subscription(
    request: Request,
    token: str,
    payload: SubscriptionUpdate,
    store: DocumentStore = Depends(get_store),
):
    return ok(request, await svc.update_subscription(store, token, payload.model_dump(exclude_none=True)))


@router.delete("/{token}")
async def delete_subscription(request: Request, token: str, store: DocumentStore = Depends(get_store)):
    return ok(request, await svc.delete_subscription(store, token))

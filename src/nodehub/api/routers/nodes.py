from fastapi import APIRouter, Depends, Request, status

from nodehub.api.deps import get_store
from nodehub.api.responses import ok
from nodehub.schemas import NodeCreate, NodeUpdate
from nodehub.security import require_admin_key
from nodehub.services import nodes as svc
from nodehub.settings import Settings, get_settings
from nodehub.store import DocumentStore

router = APIRouter(prefix="/api/nodes", tags=["nodes"], dependencies=[Depends(require_admin_key)])


@router.get("")
async def list_nodes(
    request: Request,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    rows = await svc.list_nodes(store)
    return ok(request, [svc.node_view(row, window_seconds=settings.online_window_seconds) for row in rows])


@router.post("")
async def create_node(
    request: Request,
    payload: NodeCreate,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    node = await svc.create_node(store, payload.model_dump(mode="json"))
    view = svc.node_view(node, window_seconds=settings.online_window_seconds)
    return ok(request, view, status_code=status.HTTP_201_CREATED)


@router.get("/{node_id}")
async def get_node(
    request: Request,
    node_id: str,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    node = await svc.get_node(store, node_id)
    return ok(request, svc.node_view(node, window_seconds=settings.online_window_seconds))


@router.patch("/{node_id}")
async def update_node(
    request: Request,
    node_id: str,
    payload: NodeUpdate,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    node = await svc.update_node(store, node_id, payload.model_dump(exclude_none=True))
    return ok(request, svc.node_view(node, window_seconds=settings.online_window_seconds))


@router.delete("/{node_id}")
async def delete_node(request: Request, node_id: str, store: DocumentStore = Depends(get_store)):
    return ok(request, await svc.delete_node(store, node_id))


@router.get("/{node_id}/install")
async def install_command(
    request: Request,
    node_id: str,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    node = await svc.get_node(store, node_id)
    api_base = settings.subscription_base_url or str(request.base_url)
    return ok(request, {"command": svc.install_command(node, api_base=api_base)})

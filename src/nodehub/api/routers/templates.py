from fastapi import APIRouter, Depends, Request, status

from nodehub.api.deps import get_store
from nodehub.api.responses import ok
from nodehub.schemas import TemplateCreate, TemplateUpdate
from nodehub.security import require_admin_key
from nodehub.services import templates as svc
from nodehub.store import DocumentStore

router = APIRouter(prefix="/api/templates", tags=["templates"], dependencies=[Depends(require_admin_key)])


@router.get("")
async def list_templates(request: Request, store: DocumentStore = Depends(get_store)):
    return ok(request, await svc.list_templates(store))


# Declared before /{template_id} so "registry" is not read as an id.
@router.get("/registry")
async def template_registry(request: Request):
    return ok(request, svc.registry())


@router.post("")
async def create_template(request: Request, payload: TemplateCreate, store: DocumentStore = Depends(get_store)):
    template = await svc.create_template(store, payload.model_dump())
    return ok(request, template, status_code=status.HTTP_201_CREATED)


@router.get("/{template_id}")
async def get_template(request: Request, template_id: str, store: DocumentStore = Depends(get_store)):
    return ok(request, await svc.get_template(store, template_id))


@router.patch("/{template_id}")
async def update_template(
    request: Request,
    template_id: str,
    payload: TemplateUpdate,
    store: DocumentStore = Depends(get_store),
):
    return ok(request, await svc.update_template(store, template_id, payload.model_dump(exclude_none=True)))


@router.delete("/{template_id}")
async def delete_template(request: Request, template_id: str, store: DocumentStore = Depends(get_store)):
    return ok(request, await svc.delete_template(store, template_id))

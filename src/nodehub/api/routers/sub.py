from fastapi import APIRouter, Depends, Query, Response

from nodehub.api.deps import get_store
from nodehub.client_export.render import SubscriptionFormatError
from nodehub.services.subscriptions import render_for_token
from nodehub.store import DocumentStore

router = APIRouter(tags=["subscription"])

_NO_STORE = {"Cache-Control": "no-store"}
_TEXT = "text/plain; charset=utf-8"


@router.get("/sub/{token}")
async def fetch_subscription(
    token: str,
    format: str = Query(default="v2ray"),  # noqa: A002
    store: DocumentStore = Depends(get_store),
) -> Response:
    """Public endpoint: possession of the token is the only credential."""
    try:
        rendered = await render_for_token(store, token, format)
    except SubscriptionFormatError:
        return Response(content="# unsupported format", status_code=400, media_type=_TEXT, headers=_NO_STORE)
    if rendered is None:
        return Response(content="# subscription disabled", status_code=404, media_type=_TEXT, headers=_NO_STORE)
    return Response(content=rendered.content, media_type=rendered.media_type, headers=_NO_STORE)

"""Short URL routes: shorten and redirect."""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from app.context import AppContext
from app.dependencies import client_address, get_context, get_transfers
from app.schemas.url import UrlCreate, UrlResponse
from app.services.errors import NotFoundError
from app.services.transfers import TransferService

router = APIRouter(prefix="/api/urls", tags=["urls"])

# Registered last: catches every single-segment path
redirect_router = APIRouter(tags=["urls"])


@router.post("", response_model=UrlResponse, status_code=201)
async def shorten_url(
    body: UrlCreate,
    request: Request,
    transfers: TransferService = Depends(get_transfers),
    ctx: AppContext = Depends(get_context),
):
    """Create a short link for a URL."""
    record = await transfers.shorten(body.url, source_address=client_address(request))
    return {
        "id": record.id,
        "destination": record.destination,
        "created_at": record.created_at,
        "short_url": f"{ctx.settings.BASE_URL}/{record.id}",
    }


@redirect_router.get("/{record_id}")
async def follow_short_url(
    record_id: str,
    transfers: TransferService = Depends(get_transfers),
):
    """Permanent redirect to the destination; unknown IDs go back to the main page."""
    try:
        destination = await transfers.resolve(record_id)
    except NotFoundError:
        return RedirectResponse("/", status_code=307)
    return RedirectResponse(destination, status_code=301)

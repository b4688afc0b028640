"""Files API routes: upload, metadata, download and delete."""
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Header, Request, UploadFile, File as FastAPIFile
from fastapi.responses import StreamingResponse

from app.context import AppContext
from app.dependencies import client_address, get_context, get_transfers
from app.schemas.common import DeleteResponse
from app.schemas.file import FileResponse as FileResponseSchema
from app.services.records import FileRecord
from app.services.stream_pump import AsyncIteratorSource
from app.services.transfers import TransferService

router = APIRouter(prefix="/api/files", tags=["files"])

# Short download links live at the root, outside /api
download_router = APIRouter(tags=["files"])


@router.post("", response_model=FileResponseSchema, status_code=201)
async def upload_file(
    request: Request,
    file: UploadFile = FastAPIFile(...),
    transfers: TransferService = Depends(get_transfers),
    ctx: AppContext = Depends(get_context),
):
    """Upload a file (multipart form field `file`) and create a file record."""
    record = await transfers.upload(
        file,
        size_hint=file.size,
        file_name=file.filename,
        mime_type=file.content_type,
        source_address=client_address(request),
    )
    return _to_response(record, ctx.settings.BASE_URL)


@router.put("/{file_name}", response_model=FileResponseSchema, status_code=201)
async def upload_raw(
    file_name: str,
    request: Request,
    content_type: Optional[str] = Header(None),
    content_length: Optional[int] = Header(None),
    transfers: TransferService = Depends(get_transfers),
    ctx: AppContext = Depends(get_context),
):
    """Upload the raw request body, streamed straight into storage (curl --upload-file)."""
    record = await transfers.upload(
        AsyncIteratorSource(request.stream()),
        size_hint=content_length,
        file_name=file_name,
        mime_type=content_type,
        source_address=client_address(request),
    )
    return _to_response(record, ctx.settings.BASE_URL)


@router.get("/{file_id}", response_model=FileResponseSchema)
async def get_file_metadata(
    file_id: str,
    transfers: TransferService = Depends(get_transfers),
    ctx: AppContext = Depends(get_context),
):
    """Get file metadata by ID."""
    record = await transfers.get_file(file_id)
    return _to_response(record, ctx.settings.BASE_URL)


@router.delete("/{file_id}", response_model=DeleteResponse)
async def delete_file(
    file_id: str,
    transfers: TransferService = Depends(get_transfers),
):
    """Delete a file and its record."""
    record = await transfers.get_file(file_id)
    await transfers.delete_file(record)
    return {"deleted": True, "id": file_id}


@download_router.get("/files/{file_id}")
async def download_file(
    file_id: str,
    transfers: TransferService = Depends(get_transfers),
):
    """Stream a file by short ID."""
    record = await transfers.get_file(file_id)
    download = await transfers.download(record)
    return StreamingResponse(
        download.chunks,
        headers={
            # Passed as a header so Starlette doesn't append a charset
            "Content-Type": download.mime_type,
            "Content-Length": str(download.size_bytes),
            "Content-Disposition": _content_disposition(download.file_name),
        },
    )


def _content_disposition(file_name: str) -> str:
    fallback = file_name.encode("ascii", "replace").decode("ascii").replace("\\", "_").replace('"', "_")
    return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name)}"


def _to_response(record: FileRecord, base_url: str) -> dict:
    """Convert a file record to response dict."""
    return {
        "id": record.id,
        "file_name": record.file_name,
        "mime_type": record.mime_type,
        "size_bytes": record.size_bytes,
        "created_at": record.created_at,
        "download_url": f"{base_url}/files/{record.id}",
    }

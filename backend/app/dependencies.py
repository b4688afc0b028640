"""FastAPI dependencies that hand the startup context to routes."""
from fastapi import Request

from app.context import AppContext
from app.services.transfers import TransferService


def get_context(request: Request) -> AppContext:
    return request.app.state.ctx


def get_transfers(request: Request) -> TransferService:
    return get_context(request).transfers


async def get_db(request: Request):
    """FastAPI dependency that yields an async DB session."""
    async with get_context(request).session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def client_address(request: Request) -> str:
    return request.client.host if request.client else ""

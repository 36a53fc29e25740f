"""Image and public share endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from tabletop_scribe.api.dependencies import get_container, require_user
from tabletop_scribe.domain.uploads import ObjectContent
from tabletop_scribe.services.auth import AuthenticatedUser

router = APIRouter(prefix="/api", tags=["media"])

IMAGE_CACHE_CONTROL = "private, max-age=3600"
PUBLIC_IMAGE_CACHE_CONTROL = "public, max-age=3600"


@router.get("/image/{encoded_key}")
async def get_image(
    encoded_key: str,
    request: Request,
    _user: AuthenticatedUser = Depends(require_user),
) -> Response:
    """Stream an image to an authenticated user."""
    storage_service = get_container(request).storage_service
    content = await run_in_threadpool(storage_service.get_image, encoded_key)
    return _image_response(content, IMAGE_CACHE_CONTROL)


@router.get("/share/{session_id}")
async def get_shared_session(session_id: str, request: Request) -> dict[str, object]:
    """Return the public view of a session."""
    return await get_container(request).share_service.get_public_session(session_id)


@router.get("/share-image/{encoded_key}")
async def get_shared_image(encoded_key: str, request: Request) -> Response:
    """Stream an image referenced by a shared session."""
    storage_service = get_container(request).storage_service
    content = await run_in_threadpool(storage_service.get_image, encoded_key)
    return _image_response(content, PUBLIC_IMAGE_CACHE_CONTROL)


def _image_response(content: ObjectContent, cache_control: str) -> Response:
    return Response(
        content=content.body,
        media_type=content.content_type,
        headers={"Cache-Control": cache_control},
    )

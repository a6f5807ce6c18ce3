"""
Route definitions for the file store.

All ``/v1/files`` traffic is dispatched by one handler on method and path:

- ``POST /v1/files``: upload a single file (multipart ``file`` and
  optional ``purpose``).
- ``GET /v1/files``: list stored files.
- ``GET /v1/files/{file_id}``: file metadata.
- ``GET /v1/files/{file_id}/content``: file content as a JSON string.
- ``GET /v1/files/download/{file_id}``: raw bytes as an attachment.
- ``DELETE /v1/files/{file_id}``: delete.  Always HTTP 200; the body's
  ``deleted`` flag reports the outcome.
- ``OPTIONS``: CORS preflight.

GET paths are matched after removing trailing slashes and lower-casing.
Unknown paths and other methods are internal errors, as existing clients
expect.
"""

import asyncio
import typing
import urllib.parse

import fastapi
import fastapi.responses
import structlog

import image_gateway.dependencies
import image_gateway.exceptions
import image_gateway.middleware
import image_gateway.models
import image_gateway.request_assembly
import image_gateway.services.file_registry

logger = structlog.get_logger()

file_router = fastapi.APIRouter(tags=["Files"])

FILES_PATH = "/v1/files"

_ALL_HTTP_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

FileRegistryDependency = typing.Annotated[
    image_gateway.services.file_registry.FileRegistry,
    fastapi.Depends(image_gateway.dependencies.get_file_registry),
]


def _unsupported_path(normalized_path: str) -> image_gateway.exceptions.InternalServerError:
    return image_gateway.exceptions.InternalServerError(f"unsupported uri path: {normalized_path}")


async def _list_files(
    file_registry: image_gateway.services.file_registry.FileRegistry,
) -> fastapi.responses.JSONResponse:
    file_objects = await asyncio.to_thread(file_registry.list)
    list_files_response = image_gateway.models.ListFilesResponse(data=file_objects)
    return fastapi.responses.JSONResponse(content=list_files_response.model_dump())


async def _retrieve_file(
    file_registry: image_gateway.services.file_registry.FileRegistry,
    file_id: str,
) -> fastapi.responses.JSONResponse:
    file_object = await asyncio.to_thread(file_registry.retrieve_metadata, file_id)
    return fastapi.responses.JSONResponse(content=file_object.model_dump())


async def _retrieve_file_content(
    file_registry: image_gateway.services.file_registry.FileRegistry,
    file_id: str,
) -> fastapi.responses.JSONResponse:
    content = await asyncio.to_thread(file_registry.retrieve_content, file_id)
    try:
        text_content = content.decode("utf-8")
    except UnicodeDecodeError as decode_error:
        raise image_gateway.exceptions.InternalServerError(
            f"The content of {file_id} is not UTF-8 text. Use {FILES_PATH}/download/{file_id} instead.",
        ) from decode_error
    return fastapi.responses.JSONResponse(content=text_content)


def _build_content_disposition(filename: str) -> str:
    # Header values are latin-1, so any name that needs quoting uses the RFC 5987 form.
    quoted_filename = urllib.parse.quote(filename)
    if quoted_filename != filename:
        return f"attachment; filename*=utf-8''{quoted_filename}"
    return f"attachment; filename={filename}"


async def _download_file(
    file_registry: image_gateway.services.file_registry.FileRegistry,
    file_id: str,
) -> fastapi.responses.Response:
    downloaded_file = await asyncio.to_thread(file_registry.download, file_id)
    logger.info(
        "file_downloaded",
        file_id=file_id,
        content_type=downloaded_file.content_type,
        size_bytes=len(downloaded_file.content),
    )
    return fastapi.responses.Response(
        content=downloaded_file.content,
        media_type=downloaded_file.content_type,
        headers={"Content-Disposition": _build_content_disposition(downloaded_file.filename)},
    )


async def _dispatch_get_request(
    request: fastapi.Request,
    file_registry: image_gateway.services.file_registry.FileRegistry,
) -> fastapi.responses.Response:
    normalized_path = request.url.path.rstrip("/").lower()
    path_segments = normalized_path.split("/")

    if path_segments[:3] != ["", "v1", "files"]:
        raise _unsupported_path(normalized_path)
    resource_segments = path_segments[3:]

    if not resource_segments:
        return await _list_files(file_registry)

    if len(resource_segments) == 2 and resource_segments[0] == "download":
        return await _download_file(file_registry, resource_segments[1])

    file_id = resource_segments[0]
    if not file_id.startswith(image_gateway.models.FILE_IDENTIFIER_PREFIX):
        raise _unsupported_path(normalized_path)

    if len(resource_segments) == 1:
        return await _retrieve_file(file_registry, file_id)
    if len(resource_segments) == 2 and resource_segments[1] == "content":
        return await _retrieve_file_content(file_registry, file_id)

    raise _unsupported_path(normalized_path)


@file_router.api_route(FILES_PATH, methods=_ALL_HTTP_METHODS, summary="Upload or list files")
@file_router.api_route(
    FILES_PATH + "/{file_path:path}",
    methods=_ALL_HTTP_METHODS,
    summary="Retrieve, download or delete a file",
)
async def handle_files_request(
    request: fastapi.Request,
    file_registry: FileRegistryDependency,
) -> fastapi.responses.Response:
    """
    Dispatch a file store request by method, then by path.

    The ``file_path`` path parameter is only used for routing; the full
    request path is matched here so trailing slashes and letter case are
    handled in one place.
    """
    method = request.method

    if method == "OPTIONS":
        return image_gateway.middleware.build_preflight_response()

    if method == "POST":
        file_object = await image_gateway.request_assembly.assemble_file_upload(request, file_registry)
        return fastapi.responses.JSONResponse(content=file_object.model_dump())

    if method == "GET":
        return await _dispatch_get_request(request, file_registry)

    if method == "DELETE":
        file_id = request.url.path.removeprefix(FILES_PATH + "/").rstrip("/")
        deleted = await asyncio.to_thread(file_registry.delete, file_id)
        delete_file_status = image_gateway.models.DeleteFileStatus(id=file_id, deleted=deleted)
        return fastapi.responses.JSONResponse(content=delete_file_status.model_dump())

    raise image_gateway.exceptions.InternalServerError("Invalid HTTP Method.")

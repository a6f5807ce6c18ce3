"""
Client for the external image inference engine.

The engine is a separate server exposing the same three image routes as
the gateway (``/v1/images/generations``, ``/v1/images/edits`` and
``/v1/images/variations``).  The gateway forwards the normalised request
as JSON, with referenced files described by their ``FileObject``, and
expects a ``ListImagesResponse`` in return.  When ``url`` output is
requested, the engine writes each image into the shared archives
directory and reports its path there.

Every failure (unreachable server, timeout, non-success status, oversize
or malformed reply) is raised as ``InferenceEngineError``.  No request is
retried: image jobs are expensive and not idempotent.
"""

import httpx
import pydantic
import structlog

import image_gateway.exceptions
import image_gateway.models

logger = structlog.get_logger()

GENERATIONS_PATH = "/v1/images/generations"
EDITS_PATH = "/v1/images/edits"
VARIATIONS_PATH = "/v1/images/variations"


class InferenceEngineService:
    """
    Asynchronous HTTP client for the inference engine.

    Holds one ``httpx.AsyncClient`` with a bounded connection pool for
    the lifetime of the application; ``close`` must be called on
    shutdown.  Calls are independent, so the service is safe for
    concurrent use from multiple request tasks.
    """

    def __init__(
        self,
        inference_engine_base_url: str,
        request_timeout_seconds: float,
        connection_pool_size: int = 10,
        maximum_response_bytes: int = 67_108_864,
    ) -> None:
        """
        Args:
            inference_engine_base_url: Base URL of the engine server
                (e.g. ``"http://localhost:8081"``).
            request_timeout_seconds: Maximum time to wait for one job.
                Image jobs are slow, so this is generous by default.
            connection_pool_size: Maximum number of concurrent
                connections to the engine.
            maximum_response_bytes: Largest reply body accepted.
                ``b64_json`` results embed whole images, hence the
                default of 64 MiB.
        """
        self.inference_engine_base_url = inference_engine_base_url
        self._maximum_response_bytes = maximum_response_bytes
        self.http_client = httpx.AsyncClient(
            base_url=inference_engine_base_url,
            timeout=httpx.Timeout(request_timeout_seconds),
            limits=httpx.Limits(
                max_connections=connection_pool_size,
                max_keepalive_connections=connection_pool_size,
            ),
        )

    async def generate_images(
        self,
        image_request: image_gateway.models.ImageCreateRequest,
    ) -> image_gateway.models.ListImagesResponse:
        return await self._submit_image_job(GENERATIONS_PATH, image_request)

    async def edit_image(
        self,
        image_request: image_gateway.models.ImageEditRequest,
    ) -> image_gateway.models.ListImagesResponse:
        return await self._submit_image_job(EDITS_PATH, image_request)

    async def create_image_variation(
        self,
        image_request: image_gateway.models.ImageVariationRequest,
    ) -> image_gateway.models.ListImagesResponse:
        return await self._submit_image_job(VARIATIONS_PATH, image_request)

    async def _submit_image_job(
        self,
        engine_path: str,
        image_request: image_gateway.models.ImageRequest,
    ) -> image_gateway.models.ListImagesResponse:
        logger.info(
            "inference_engine_job_submitted",
            engine_path=engine_path,
            model=image_request.model,
            user=image_request.user,
        )

        try:
            http_response = await self.http_client.post(
                engine_path,
                json=image_request.model_dump(mode="json", exclude_none=True),
            )
            http_response.raise_for_status()
        except httpx.HTTPStatusError as http_status_error:
            logger.error(
                "inference_engine_http_error",
                engine_path=engine_path,
                status_code=http_status_error.response.status_code,
            )
            raise image_gateway.exceptions.InferenceEngineError(
                f"The inference engine returned HTTP status {http_status_error.response.status_code}.",
            ) from http_status_error
        except httpx.TimeoutException as timeout_error:
            logger.error(
                "inference_engine_timeout",
                engine_path=engine_path,
                error=str(timeout_error),
            )
            raise image_gateway.exceptions.InferenceEngineError(
                "The request to the inference engine timed out.",
            ) from timeout_error
        except httpx.ConnectError as connection_error:
            logger.error(
                "inference_engine_connection_failed",
                engine_path=engine_path,
                error=str(connection_error),
            )
            raise image_gateway.exceptions.InferenceEngineError(
                "The inference engine is not reachable.",
            ) from connection_error
        except httpx.RequestError as request_error:
            logger.error(
                "inference_engine_request_failed",
                engine_path=engine_path,
                error_type=type(request_error).__name__,
                error=str(request_error),
            )
            raise image_gateway.exceptions.InferenceEngineError(
                f"An unexpected communication error occurred with the "
                f"inference engine: {type(request_error).__name__}.",
            ) from request_error

        response_body_bytes = len(http_response.content)
        if response_body_bytes > self._maximum_response_bytes:
            logger.error(
                "inference_engine_response_too_large",
                response_bytes=response_body_bytes,
                maximum_bytes=self._maximum_response_bytes,
            )
            raise image_gateway.exceptions.InferenceEngineError(
                f"The inference engine response body ({response_body_bytes} bytes) "
                f"exceeds the configured maximum ({self._maximum_response_bytes} bytes).",
            )

        try:
            images_response = image_gateway.models.ListImagesResponse.model_validate_json(http_response.content)
        except pydantic.ValidationError as validation_error:
            logger.error(
                "inference_engine_response_parsing_failed",
                engine_path=engine_path,
                error_count=validation_error.error_count(),
            )
            raise image_gateway.exceptions.InferenceEngineError(
                "The inference engine returned an unexpected response structure.",
            ) from validation_error

        logger.info(
            "inference_engine_job_completed",
            engine_path=engine_path,
            image_count=len(images_response.data),
        )
        return images_response

    async def check_health(self) -> bool:
        """Return ``True`` when the engine answers ``GET /health`` with 200."""
        try:
            response = await self.http_client.get("/health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        await self.http_client.aclose()

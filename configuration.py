"""
Application configuration module.

Loads all configuration values from environment variables with the prefix
IMAGE_GATEWAY_. Default values are provided for local development. A .env
file is also supported via pydantic-settings.

This module is the single source of truth for all runtime configuration
within the gateway process.
"""

import pydantic
import pydantic_settings


class ApplicationConfiguration(pydantic_settings.BaseSettings):
    """
    Centralised configuration for the image generation gateway.

    Every field maps to an environment variable prefixed with IMAGE_GATEWAY_.
    For example, the field ``inference_engine_base_url`` is populated from
    the environment variable IMAGE_GATEWAY_INFERENCE_ENGINE_BASE_URL.

    Configuration categories
    ------------------------
    - **Application**: host, port, advertised socket address, log level
    - **File store**: archives directory
    - **Inference engine**: model name, server URL, timeout, connection
      pool size, maximum response bytes
    - **Resilience**: retry-after duration for the readiness probe
    """

    # ── Application settings ─────────────────────────────────────────────

    application_host: str = "0.0.0.0"

    application_port: int = pydantic.Field(default=8080, ge=1, le=65535)

    advertised_socket_address: str = pydantic.Field(
        default="0.0.0.0:8080",
        description=(
            "The host:port clients use to reach this gateway. Image URLs "
            "returned by the inference engine are rewritten to "
            "{scheme}://{advertised_socket_address}/v1/files/download/{id}."
        ),
    )

    log_level: str = pydantic.Field(
        default="INFO",
        description=(
            "Minimum log level for structured JSON logging. "
            "Accepted values: DEBUG, INFO, WARNING, ERROR, CRITICAL."
        ),
    )

    # ── File store settings ──────────────────────────────────────────────

    archives_directory: str = pydantic.Field(
        default="archives",
        description=(
            "Directory holding uploaded and generated files, one "
            "sub-directory per file id. Shared with the inference engine."
        ),
    )

    # ── Inference engine settings ────────────────────────────────────────

    model_name: str = pydantic.Field(
        default="stable-diffusion",
        description="Name of the image model served by the inference engine, reported at startup.",
    )

    inference_engine_base_url: str = pydantic.Field(
        default="http://localhost:8081",
        description=(
            "Base URL of the inference engine. The gateway appends "
            "/v1/images/generations, /v1/images/edits or "
            "/v1/images/variations to this URL."
        ),
    )

    timeout_for_inference_engine_requests_in_seconds: float = pydantic.Field(
        default=600.0,
        gt=0,
        description=(
            "Maximum time in seconds to wait for the inference engine to "
            "finish one image job before treating it as failed."
        ),
    )

    inference_engine_connection_pool_size: int = pydantic.Field(
        default=10,
        ge=1,
        description="Maximum number of concurrent connections to the inference engine.",
    )

    inference_engine_maximum_response_bytes: int = pydantic.Field(
        default=67_108_864,
        ge=1,
        description=(
            "Largest inference engine response body accepted, in bytes. "
            "Base64 results embed whole images. Default is 64 MiB."
        ),
    )

    # ── Resilience settings ──────────────────────────────────────────────

    retry_after_not_ready_seconds: int = pydantic.Field(
        default=10,
        ge=0,
        description=(
            "Value (in seconds) of the Retry-After response header on "
            "HTTP 503 (Service Unavailable) readiness responses."
        ),
    )

    @pydantic.field_validator("advertised_socket_address")
    @classmethod
    def validate_advertised_socket_address(cls, advertised_socket_address: str) -> str:
        """Require ``host:port`` with a port in 1-65535."""
        host, separator, port = advertised_socket_address.rpartition(":")
        if not separator or not host or not port.isdigit() or not 1 <= int(port) <= 65535:
            raise ValueError(
                f"advertised_socket_address must have the form host:port, got {advertised_socket_address!r}.",
            )
        return advertised_socket_address

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_prefix="IMAGE_GATEWAY_",
    )

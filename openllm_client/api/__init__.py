"""HTTP route mounting for the engine client (FastAPI)."""

from openllm_client.api.routes import (
    create_app,
    create_router,
    install_error_handlers,
    mount_openllm,
)

__all__ = [
    "create_app",
    "create_router",
    "install_error_handlers",
    "mount_openllm",
]

import uvicorn

from mindcheck.core.config import get_settings


def run() -> None:
    """Serve the check-in API; the app is built inside the worker via the factory."""
    settings = get_settings()
    uvicorn.run(
        "mindcheck.core.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()

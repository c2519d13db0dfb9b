from relaybot.logging_config import setup_logging
from relaybot.routes import create_app
from relaybot.settings import settings


# Configure logging once for the whole process.
setup_logging()

# FastAPI application instance for uvicorn.
app = create_app()


def run() -> None:
    import uvicorn

    # Use our own logging configuration configured in relaybot.logging_config.
    uvicorn.run("main:app", host=settings.api_host, port=settings.api_port, log_config=None)


if __name__ == "__main__":
    run()

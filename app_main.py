"""Application entry point for the PrepQuiz API server."""

from __future__ import annotations

from prep_app.constants.about import APP_NAME
from prep_app.server.api_server import start_api_server
from prep_app.utils.logging_config import configure_logging
from prep_app.utils.settings import Settings


def main() -> None:
    """Load settings, initialize logging and serve the API until interrupted."""
    settings = Settings.from_env()
    logger = configure_logging(settings.log_level)
    logger.info("Starting %s...", APP_NAME)
    logger.info("Library data is stored in %s", settings.data_file.resolve())

    server_thread = start_api_server(settings)
    try:
        server_thread.join()
    except KeyboardInterrupt:
        logger.info("Shutting down.")


if __name__ == "__main__":
    main()

"""``python -m wastewatch``: run the API (and the built frontend) with uvicorn."""

import uvicorn

from wastewatch.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("wastewatch.main:app", host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()

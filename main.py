"""
Entry point for caption-extractor.

Run this file directly to start the FastAPI server:
    python main.py
    python -m main

Or use uvicorn directly:
    uvicorn caption_extractor.main:app --reload --host 0.0.0.0 --port 8000
"""

import uvicorn

from caption_extractor.config import settings


def main() -> None:
    """
    Start the uvicorn server.

    Server configuration can be overridden via environment variables:
    - HOST: Server host (default: 0.0.0.0)
    - PORT: Server port (default: 8000)
    - LOG_LEVEL: Logging level (default: info)
    - CAPTION_STORAGE_BACKEND: "memory" or "sqlite"
    """
    print("=" * 60)
    print("Caption Extractor")
    print("=" * 60)
    print(f"Starting server on http://{settings.host}:{settings.port}")
    print(f"  - Storage: {settings.storage_backend}")
    print(f"  - Backend: {settings.backend_url}")
    print("=" * 60)

    uvicorn.run(
        "caption_extractor.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()

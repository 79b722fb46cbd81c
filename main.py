"""Launch the admission engine API with uvicorn.

Host, port and autoreload come from ``API_HOST``, ``API_PORT`` and
``API_RELOAD``. Application wiring lives in app.py.
"""

from __future__ import annotations

import uvicorn

from admission_engine.utils.config import get_settings


def main() -> None:
    settings = get_settings()
    base_url = f"http://{settings.api_host}:{settings.api_port}"
    print("=" * 60)
    print(f"  {settings.app_name} {settings.app_version}")
    print(f"  API      : {base_url}")
    print(f"  Docs     : {base_url}/docs")
    print(f"  Database : {settings.database_path}")
    print("=" * 60)

    uvicorn.run(
        "app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

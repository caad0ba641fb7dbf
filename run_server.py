"""
Condo Compliance Server Runner
==============================
Run this directly: python run_server.py
Host, port and reload come from settings (.env / environment).
"""
import uvicorn

from app.core.config import get_settings


def main():
    settings = get_settings()

    print()
    print("=" * 60)
    print(f"  {settings.app_name.upper()} v{settings.app_version}")
    print("=" * 60)
    print()
    print(f"  Database: {settings.database_url.split('@')[-1]}")
    print(f"  API Docs: http://localhost:{settings.port}/docs")
    print(f"  Health:   http://localhost:{settings.port}/api/health")
    print()
    print("  Press Ctrl+C to stop")
    print("=" * 60)
    print()

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

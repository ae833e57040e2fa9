# backend/main.py
import uvicorn

from backend.app import app  # noqa: F401
from backend.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "backend.app:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
    )

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.api import api_router
from app.core.config import get_settings
from database import init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_db()
    yield
    # Shutdown


logger = logging.getLogger(__name__)


class DynamicCORSMiddleware(BaseHTTPMiddleware):
    """CORS middleware: the web app origin in production, any origin in development."""

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin")
        env = os.getenv("ENVIRONMENT", "development")

        # Handle preflight requests
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)

        if origin:
            allowed = env != "production" or origin.rstrip("/") == get_settings().web_app_url.rstrip("/")
            if allowed:
                response.headers["Access-Control-Allow-Origin"] = origin
                response.headers["Access-Control-Allow-Credentials"] = "true"
            else:
                logger.warning(f"CORS rejected - Origin '{origin}' is not the web app")

        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization, Stripe-Signature"

        return response


def create_app() -> FastAPI:
    app = FastAPI(
        title="Coach Pages Pro Status",
        description="Pro entitlement API: trials, Stripe subscriptions and manual comps",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(DynamicCORSMiddleware)

    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

"""Purchase Capture FastAPI application.

Serves the multiplexed ``/stripe`` entry point, the gateway webhooks and the
offline continuation link.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from purchasing import __version__
from purchasing.api.routes import register_error_handlers, router
from purchasing.gateway import get_gateway
from purchasing.store import get_stores
from purchasing.utils.logging import configure_logging

configure_logging()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Purchase Capture API",
    description="Card purchases through Stripe with document-store persistence",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "gateway": type(get_gateway()).__name__,
            "databases": [store.name for store in get_stores()],
        }
    )

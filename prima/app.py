"""
PRIMA Messaging Service: Application Factory
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# ── 1. Configure logging ──
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("prima-server")

# ── 2. Create FastAPI app ──
app = FastAPI(title="PRIMA Messaging Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── 3. Register routers ──
from prima.routers import health, prompts, webhook  # noqa: E402

app.include_router(health.router)
app.include_router(webhook.router)
app.include_router(prompts.router)


# ── 4. Lifecycle ──
@app.on_event("startup")
async def startup_event():
    from prima.gateway.setup import initialize_gateway

    await initialize_gateway()
    logger.info("PRIMA messaging gateway ready")


@app.on_event("shutdown")
async def shutdown_event():
    from prima.gateway.setup import shutdown_gateway

    await shutdown_gateway()

"""FastAPI application exposing the store dashboard, driver and storefront APIs."""

import logging
import os
from typing import Dict

from fastapi import FastAPI, HTTPException

from shopdesk.config.supabase_client import SUPABASE_ANON_KEY, SUPABASE_URL
from shopdesk.api.routes.analytics import router as analytics_router
from shopdesk.api.routes.auth import router as auth_router
from shopdesk.api.routes.chat import router as chat_router
from shopdesk.api.routes.deliveries import router as deliveries_router
from shopdesk.api.routes.driver import router as driver_router
from shopdesk.api.routes.orders import router as orders_router
from shopdesk.api.routes.payouts import router as payouts_router
from shopdesk.api.routes.tracking import router as tracking_router
from shopdesk.api.routes.webhooks import router as webhooks_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Shopdesk")
logger = logging.getLogger(__name__)

# Include Routers
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(deliveries_router)
app.include_router(driver_router)
app.include_router(payouts_router)
app.include_router(analytics_router)
app.include_router(tracking_router)
app.include_router(webhooks_router)
app.include_router(orders_router)
app.include_router(chat_router)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/config")
def supabase_config() -> Dict[str, str]:
    if not SUPABASE_URL or not SUPABASE_ANON_KEY:
        raise HTTPException(status_code=500, detail="Supabase configuration missing.")
    return {"supabaseUrl": SUPABASE_URL, "supabaseAnonKey": SUPABASE_ANON_KEY}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("shopdesk.main:app", host="127.0.0.1", port=8000, reload=True)

"""Lead enrichment HTTP API."""

import os

from fastapi import FastAPI

from leadenrich.logging_utils import configure_logging
from leadenrich.web.routers.enrichment import router as enrichment_router

_root_path = os.environ.get("ROOT_PATH", "")

configure_logging()

app = FastAPI(title="Lead Enrichment", root_path=_root_path)
app.include_router(enrichment_router)


@app.get("/healthz")
def healthz():
    return {"ok": True}

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

# Load config first so all downstream imports see correct envs.
from evsingleline.core.settings import settings  # centralizes env/.env loading and validation

from evsingleline.routers import survey as survey_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="EV Single-Line Survey")

# Register survey editing, reports and exports
app.include_router(survey_router.router)

# CORS (single block)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/health")
def health():
    return {"status": "ok"}

logger.info(f"EV single-line API ready; exports go to {settings.OUT}")

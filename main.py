from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from dotenv import load_dotenv

from db import init_db, get_db
from matching.config import Settings
from matching.routes import router as matching_router
from matching.services import build_services

load_dotenv()

settings = Settings.from_env()

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logging.info(f"Starting Scholarship Matching API (log level {settings.log_level})")

app = FastAPI(title="Scholarship Matching API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    init_db()
    app.state.matching = build_services(settings, session_scope=get_db)
    app.state.matching.start()


@app.on_event("shutdown")
def shutdown():
    app.state.matching.stop()


app.include_router(matching_router)


@app.get("/health", tags=["meta"], summary="Health check")
def health():
    return {"status": "ok"}

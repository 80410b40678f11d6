from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from app.api import languages, providers, sessions
from app.config import settings
from app.db.database import init_db
from app.observability import setup_langsmith_tracing

app = FastAPI(
    title=settings.app_name,
    description="Conversational symptom triage and care navigation",
    version="0.1.0"
)


@app.on_event("startup")
def on_startup():
    """Create the SQLite tables for saved providers."""
    init_db()
    # Trace Gemini calls in LangSmith when configured
    setup_langsmith_tracing()


# Register routers
app.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])
app.include_router(providers.router, prefix="/providers", tags=["Providers"])
app.include_router(languages.router, prefix="/languages", tags=["Languages"])


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.app_name}", "status": "healthy"}


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Ensure all errors return JSON so the UI can display them."""
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc),
            "error": "internal_error",
        },
    )

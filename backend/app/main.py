"""
FastAPI main application.
Entry point for the Chat Navigation Router API.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from app.core.config import get_settings
from app.core.errors import InfrastructureError
from app.db.crud_docs import document_crud
from app.db.session import SessionLocal, init_db
from app.api import routes_chat, routes_docs
from app.core.logging import setup_logging
from app.services.chat.known_terms import KnownTermRegistry, load_file, set_known_term_registry
from app.services.chat.router import known_terms_status
from app.services.doc_store import ingest_documents, load_seed_documents, make_known_terms_loader

logger = setup_logging()


def seed_documents_if_empty() -> None:
    """Seed the bundled help documents on first start."""
    settings = get_settings()
    db = SessionLocal()
    try:
        if document_crud.list_ordered(db):
            return
        records = load_seed_documents(settings.docs_seed_dir)
        if records:
            report = ingest_documents(db, records)
            logger.info(f"Seeded {report.inserted} documents from {settings.docs_seed_dir}")
    finally:
        db.close()


def build_known_term_registry() -> KnownTermRegistry:
    """
    Registry over the bundled snapshot merged with document vocabulary.
    A pinned hash refers to the bundled file as written, so it is served unmerged.
    """
    settings = get_settings()
    path = settings.known_terms_snapshot_path
    ttl_days = settings.known_terms_ttl_days

    if settings.known_terms_expected_hash:
        def loader():
            return load_file(path, ttl_days=ttl_days)
    else:
        loader = make_known_terms_loader(SessionLocal, path, ttl_days)

    return KnownTermRegistry(loader(), loader=loader, expected_hash=settings.known_terms_expected_hash)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database, seed documents and load known terms on startup."""
    logger.info("Starting Chat Navigation Router API...")
    init_db()
    logger.info("Database initialized.")
    seed_documents_if_empty()
    registry = build_known_term_registry()
    set_known_term_registry(registry)
    logger.info(f"Known terms ready: {registry.current.version} ({len(registry.current)} terms)")
    yield
    logger.info("Shutting down Chat Navigation Router API...")


# Create FastAPI app
app = FastAPI(
    title="Chat Navigation Router API",
    description="Deterministic intent routing for the in-app chat: panel commands, clarifications, suggestions and help docs",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes_chat.router, prefix="/api", tags=["chat"])
app.include_router(routes_docs.router, prefix="/api")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "message": "Chat Navigation Router API is running",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Detailed health check, including the known-term snapshot."""
    settings = get_settings()
    return {
        "status": "healthy",
        "database": settings.database_url,
        "classifier_enabled": settings.classifier_enabled,
        "known_terms": known_terms_status(),
    }


@app.exception_handler(InfrastructureError)
async def infrastructure_exception_handler(request: Request, exc: InfrastructureError):
    logger.error(f"Infrastructure failure: {exc} ({exc.cause})")
    return JSONResponse(
        status_code=503,
        content={"detail": "Sorry, something went wrong on our side. Please try again in a moment."},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc)},
    )


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True
    )

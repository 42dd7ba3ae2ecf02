from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from .config import settings
from .database import engine, Base, SessionLocal
from .pricing.catalog import seed_default_rules
from .pricing_engine import PricingEngine
from .routers import quotes, rules

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("quoting")

# Create tables (handles new tables but won't add columns to existing ones)
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title=f"{settings.COMPANY_NAME} Quoting API",
    description="Rule-based pricing for moving, packing, cleaning and delivery services",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Strategy registry and formatter are built once and shared by every request
app.state.pricing_engine = PricingEngine(settings=settings)

app.include_router(quotes.router, prefix="/api")
app.include_router(rules.router, prefix="/api")


@app.get("/health")
def health():
    return {
        "status": "ok",
        "app": "quoting-engine",
        "service_types": app.state.pricing_engine.registry.list(),
    }


@app.on_event("startup")
def auto_seed():
    """Seed the default rule catalog on first run."""
    logger.info(f"Strategies registered: {app.state.pricing_engine.registry.list()}")
    if not settings.SEED_DEFAULT_RULES:
        return
    db = SessionLocal()
    try:
        seed_default_rules(db)
    finally:
        db.close()

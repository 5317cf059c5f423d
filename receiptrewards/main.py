"""
Receipt Rewards Backend: FastAPI application entry-point.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from receiptrewards.config import settings
from receiptrewards.database import Base, SessionLocal, engine
from receiptrewards.errors import LoyaltyError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(name)-30s  %(levelname)-5s  %(message)s",
)
logger = logging.getLogger(__name__)


def seed_demo_data(db) -> None:
    """Create one demo store and its reward rule if no store exists."""
    from receiptrewards.loyalty.models import RewardRuleModel
    from receiptrewards.receipts.models import StoreModel

    if db.query(StoreModel).count() > 0:
        return
    db.add(StoreModel(
        id="demo-store",
        name="Demo Cafe",
        address="Bole Road",
        tin="0012345678",
        branch_name="Bole",
        min_receipt_amount=settings.DEFAULT_MIN_RECEIPT_AMOUNT,
        receipt_validity_hours=settings.DEFAULT_RECEIPT_VALIDITY_HOURS,
    ))
    db.add(RewardRuleModel(
        id="demo-rule",
        store_id="demo-store",
        visits_needed=settings.DEFAULT_VISITS_NEEDED,
        reward_value=settings.DEFAULT_REWARD_VALUE,
    ))
    db.commit()
    logger.info("Seeded demo store")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: ensure data dir + tables exist
    os.makedirs(settings.DATA_DIR, exist_ok=True)
    # Import models so Base.metadata knows about them
    import receiptrewards.receipts.models  # noqa: F401
    import receiptrewards.loyalty.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready (%s)", settings.DATABASE_URL)

    if settings.SEED_DEMO_DATA:
        db = SessionLocal()
        try:
            seed_demo_data(db)
        finally:
            db.close()

    yield
    logger.info("Shutting down")


app = FastAPI(
    title="Receipt Rewards",
    description="Receipt upload → verification → visit ledger → rewards",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LoyaltyError)
async def loyalty_error_handler(request: Request, exc: LoyaltyError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
async def root():
    return {"service": "Receipt Rewards", "version": "0.1.0", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


# ── Register API routers ─────────────────────────────────────────────────
from receiptrewards.receipts.routers.receipts import router as receipts_router  # noqa: E402
from receiptrewards.receipts.routers.review import router as review_router  # noqa: E402
from receiptrewards.loyalty.routers.loyalty import router as loyalty_router  # noqa: E402

app.include_router(receipts_router, prefix="/api", tags=["Receipts"])
app.include_router(review_router, prefix="/api", tags=["Admin Review"])
app.include_router(loyalty_router, prefix="/api", tags=["Loyalty"])

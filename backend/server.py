from fastapi import FastAPI, APIRouter
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from database import engine, get_db, Base
from bootstrap import ensure_default_admin, ensure_default_config
from routers.auth import router as auth_router
from routers.events import router as events_router
from routers.registrations import router as registrations_router
from routers.attendees import router as attendees_router
from routers.waitlist import router as waitlist_router
from routers.judging import router as judging_router
from routers.workspaces import router as workspaces_router
from routers.materials import router as materials_router

app = FastAPI(title="Thittam1Hub API", version="1.0.0")
api_router = APIRouter(prefix="/api")

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


# ==================== STARTUP ====================
@app.on_event("startup")
async def startup_event():
    Base.metadata.create_all(bind=engine)
    db = next(get_db())
    try:
        ensure_default_config(db)
        ensure_default_admin(db)
    finally:
        db.close()
    logger.info("Thittam1Hub API ready")


# ==================== PUBLIC ROUTES ====================
@api_router.get("/")
async def root():
    return {"message": "Thittam1Hub API is running"}


@api_router.get("/health")
async def health_check():
    return {"status": "healthy"}


api_router.include_router(auth_router)
api_router.include_router(events_router)
api_router.include_router(registrations_router)
api_router.include_router(attendees_router)
api_router.include_router(waitlist_router)
api_router.include_router(judging_router)
api_router.include_router(workspaces_router)
api_router.include_router(materials_router)

# Include router and add middleware
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

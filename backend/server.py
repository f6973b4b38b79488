from fastapi import FastAPI, APIRouter, Request
from fastapi.staticfiles import StaticFiles
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import os
import time
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from bootstrap import run_bootstrap_migrations
from errors import install_error_handlers
from uploads import UPLOAD_DIR, UPLOAD_URL_PREFIX
from routers.public import router as public_router, root as api_root
from routers.registration import router as registration_router
from routers.payment import router as payment_router
from routers.admin import router as admin_router

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Create upload directory
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

app = FastAPI(title="Esplendidez 2026 API", version="1.0.0")
api_router = APIRouter(prefix="/api")

# Mount static files for uploads
app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=str(UPLOAD_DIR)), name="uploads")

install_error_handlers(app)


@app.on_event("startup")
async def startup_event():
    run_bootstrap_migrations()
    logger.info("Environment: %s", os.environ.get("APP_ENV", "production"))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


app.add_api_route("/", api_root, methods=["GET"])

api_router.include_router(public_router)
api_router.include_router(registration_router)
api_router.include_router(payment_router)
api_router.include_router(admin_router)

# Include router and add middleware
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

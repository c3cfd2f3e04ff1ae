from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.database import init_db
from app.routers import notifications
import logging

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Hibioru Notification API",
    description="API for daily reminder notifications and follow-up scheduling via Web Push",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(notifications.router)


@app.on_event("startup")
async def startup_event():
    logger.info("Starting up Hibioru Notification API")
    init_db()
    logger.info("Database initialized")


@app.get("/")
async def root():
    return {
        "message": "Hibioru Notification API",
        "version": "1.0.0",
        "endpoints": {
            "subscribe": "POST /api/notifications/subscribe",
            "dispatch": "POST /api/notifications/users/{user_id}/dispatch",
            "follow_up_decision": "GET /api/notifications/users/{user_id}/followup/decision",
            "entry_created": "POST /api/notifications/entries/created",
            "reminder_batch": "GET /api/notifications/batch/reminder"
        }
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

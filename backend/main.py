from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from db.database import engine, Base, SessionLocal
from api.pulse import router as pulse_router
from services.reminder_habit_service import purge_expired_completions

settings.validate_pulse_configuration()

# Create all tables
Base.metadata.create_all(bind=engine)

with SessionLocal() as _db:
    purge_expired_completions(_db, datetime.now())
    _db.commit()

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(pulse_router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME}

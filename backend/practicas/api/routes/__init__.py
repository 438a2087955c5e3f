# API Routes
from .practica_routes import router as practica_router
from .cron_routes import router as cron_router
from .alert_routes import router as alert_router
from .holiday_routes import router as holiday_router

__all__ = [
    "practica_router",
    "cron_router",
    "alert_router",
    "holiday_router",
]

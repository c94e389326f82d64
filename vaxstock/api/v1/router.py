"""
Router principal de la API v1.
Agrupa todos los sub-routers de la versión 1.
"""

from fastapi import APIRouter

from vaxstock.api.v1.stock import router as stock_router
from vaxstock.api.v1.transfers import router as transfers_router
from vaxstock.api.v1.vaccinations import router as vaccinations_router
from vaxstock.api.v1.vaccine_requests import router as vaccine_requests_router

api_v1_router = APIRouter()

api_v1_router.include_router(
    stock_router,
    prefix="/stock",
    tags=["Stock"],
)

api_v1_router.include_router(
    transfers_router,
    prefix="/transfers",
    tags=["Transferencias"],
)

api_v1_router.include_router(
    vaccinations_router,
    prefix="/vaccinations",
    tags=["Vacunación"],
)

api_v1_router.include_router(
    vaccine_requests_router,
    prefix="/vaccine-requests",
    tags=["Solicitudes de vacunación"],
)

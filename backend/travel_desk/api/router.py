from fastapi import APIRouter

from travel_desk.api.notifications import notifications_router
from travel_desk.api.requests import requests_router

api_router = APIRouter()
api_router.include_router(requests_router)
api_router.include_router(notifications_router)

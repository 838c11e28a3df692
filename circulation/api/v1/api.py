# circulation/api/v1/api.py
from fastapi import APIRouter

from circulation.api.v1.endpoints import catalog, fines, loans, members, reports, reservations

api_router_v1 = APIRouter(prefix="/api/v1")

api_router_v1.include_router(catalog.router)
api_router_v1.include_router(members.router)
api_router_v1.include_router(loans.router, prefix="/loans")
api_router_v1.include_router(reservations.router, prefix="/reservations")
api_router_v1.include_router(fines.router, prefix="/fines")
api_router_v1.include_router(reports.router)

from fastapi import APIRouter

from clearledger.interfaces.api.v1.routes.appeals import router as appeals_router
from clearledger.interfaces.api.v1.routes.audit import router as audit_router
from clearledger.interfaces.api.v1.routes.catalog import router as catalog_router
from clearledger.interfaces.api.v1.routes.clearances import router as clearances_router
from clearledger.interfaces.api.v1.routes.organizations import router as organizations_router
from clearledger.interfaces.api.v1.routes.payments import router as payments_router
from clearledger.interfaces.api.v1.routes.ping import router as ping_router
from clearledger.interfaces.api.v1.routes.students import router as students_router
from clearledger.interfaces.api.v1.routes.waivers import router as waivers_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(appeals_router)
api_router.include_router(audit_router)
api_router.include_router(catalog_router)
api_router.include_router(clearances_router)
api_router.include_router(organizations_router)
api_router.include_router(payments_router)
api_router.include_router(ping_router)
api_router.include_router(students_router)
api_router.include_router(waivers_router)

from fastapi import APIRouter

from query_engine.api.meta import router as meta_router
from query_engine.api.records import router as records_router

router = APIRouter()
router.include_router(records_router, prefix="/records", tags=["records"])
router.include_router(meta_router, prefix="/meta", tags=["meta"])

from fastapi import APIRouter

from clinic_dispatch.api.routes import conversations, ledger, schedulers, webhook

api_router = APIRouter()

api_router.include_router(webhook.router, tags=["webhook"])
api_router.include_router(conversations.router, tags=["conversations"])
api_router.include_router(ledger.router, tags=["ledger"])
api_router.include_router(schedulers.router, tags=["schedulers"])

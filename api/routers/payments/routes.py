from fastapi import APIRouter
from .routers.webhook import router as WebhookRouter

router = APIRouter()

router.include_router(WebhookRouter, tags=["Платежные вебхуки"])

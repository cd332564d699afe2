import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.conversations import router as conversations_router
from app.api.messages import router as messages_router
from app.api.notifications import router as notifications_router
from app.config import settings
from app.services.errors import MessagingError, RateLimitError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Storefront Messaging API", version="0.1.0")

app.include_router(conversations_router)
app.include_router(messages_router)
app.include_router(notifications_router)


@app.exception_handler(MessagingError)
async def messaging_error_handler(request: Request, exc: MessagingError):
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


@app.get("/health")
def health():
    return {"status": "ok"}

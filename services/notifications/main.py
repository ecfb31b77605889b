"""Notifications service API built with FastAPI.

This module exposes endpoints to check service health and to send a
templated order-status e-mail to a customer. Validation is performed with
Pydantic models, e-mails go out through ``mailer.ResendMailer`` and every
attempt is recorded by the SQLAlchemy-backed ``repo.DeliveriesRepo``.
"""

import logging
import time
import uuid
from typing import Annotated, Literal, Optional

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field, constr
from pythonjsonlogger.json import JsonFormatter
from sqlalchemy import text

from mailer import ResendMailer, render
from repo import DeliveriesRepo, IdempotencyConflict, canonical_hash, engine, init_db

app = FastAPI(title="Notifications Service")

Email = constr(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=254)

logger = logging.getLogger("notifications")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # wait briefly until the database accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class NotifyContext(BaseModel):
    order_id: str = Field(min_length=1, max_length=64)
    customer_name: str = Field(min_length=1, max_length=120)


class NotifyRequest(BaseModel):
    """Request body for the notify endpoint.

    Attributes:
        to: Customer e-mail address.
        template_key: Which order update to send.
        context: Values interpolated into the template.
    """
    to: Email
    template_key: Literal["ready", "delivered"]
    context: NotifyContext


class NotifyResponse(BaseModel):
    """Response body for the notify endpoint.

    Attributes:
        sent: Whether an e-mail was handed to the provider.
        skipped: True when e-mail is not configured and nothing was sent.
        delivery_id: Recorded delivery, when one exists.
        detail: Short reason code for skipped sends.
    """
    sent: bool
    skipped: bool = False
    delivery_id: Optional[uuid.UUID] = None
    detail: Optional[str] = None


def get_mailer() -> ResendMailer:
    return ResendMailer()


def get_repo() -> DeliveriesRepo:
    return DeliveriesRepo()


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/notify", response_model=NotifyResponse)
def notify(
    req: NotifyRequest,
    mailer: Annotated[ResendMailer, Depends(get_mailer)],
    repo: Annotated[DeliveriesRepo, Depends(get_repo)],
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Send one order-status e-mail.

    When an ``Idempotency-Key`` header is provided, a retry with the same
    payload returns the earlier successful delivery without sending again,
    and a retry while the first request is still sending responds with 409
    ``IDEMPOTENCY_IN_PROGRESS``. Reusing the key with a different payload
    responds with 409 ``IDEMPOTENCY_CONFLICT``. A failed delivery may be
    retried under the same key.

    Raises:
        HTTPException: 409 on idempotency conflict, 502 when the e-mail
            provider fails.
    """
    if not mailer.configured:
        logger.info("email not configured - skipping", extra={"order_id": req.context.order_id})
        return NotifyResponse(sent=False, skipped=True, detail="EMAIL_DISABLED")

    if idempotency_key:
        try:
            previous = repo.claim(idempotency_key, canonical_hash(req.model_dump()))
        except IdempotencyConflict as e:
            logger.info("idempotency key refused", extra={"order_id": req.context.order_id, "reason": str(e)})
            raise HTTPException(status_code=409, detail=str(e))
        if previous is not None:
            return NotifyResponse(sent=True, delivery_id=previous.id, detail="REPLAY")

    email = render(req.to, req.template_key, req.context.order_id, req.context.customer_name)
    try:
        message_id = mailer.send(email)
    except httpx.HTTPError as e:
        repo.record(
            order_id=req.context.order_id,
            recipient=req.to,
            template_key=req.template_key,
            status="failed",
            error=str(e),
            idempotency_key=idempotency_key,
        )
        logger.warning("email send failed", extra={"order_id": req.context.order_id, "error": str(e)})
        raise HTTPException(status_code=502, detail="EMAIL_SEND_FAILED")

    delivery_id = repo.record(
        order_id=req.context.order_id,
        recipient=req.to,
        template_key=req.template_key,
        status="sent",
        provider_message_id=message_id,
        idempotency_key=idempotency_key,
    )
    logger.info("email sent", extra={"order_id": req.context.order_id, "template_key": req.template_key})
    return NotifyResponse(sent=True, delivery_id=delivery_id)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "9003")),
        workers=int(os.getenv("UVICORN_WORKERS", "2")),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )

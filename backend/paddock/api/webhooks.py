"""Stripe webhook route"""
import logging
from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from paddock.db.session import get_db, get_session_factory
from paddock.services.metrics_service import trigger_metrics_recompute
from paddock.services.webhook_service import process_payment_webhook

router = APIRouter(prefix="/api/stripe", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory)
):
    """Handle Stripe webhook events

    Note: the body is read as raw bytes and must not pass through any JSON
    parsing middleware, or signature verification fails. Processing is
    blocking database work and runs in the threadpool.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    ack = await run_in_threadpool(process_payment_webhook, payload, sig_header, db)

    # Runs after the response is sent; never affects the status code
    for user_id in ack.metrics_user_ids:
        background_tasks.add_task(trigger_metrics_recompute, user_id, session_factory)

    return JSONResponse(status_code=ack.status_code, content=ack.body, background=background_tasks)

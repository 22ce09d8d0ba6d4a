from __future__ import annotations

import logging

from fastapi import APIRouter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["meta"])


@router.get("/health")
async def health():
    return {"status": "ok"}

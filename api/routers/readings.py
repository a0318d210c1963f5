"""Read-only queries over the persisted reading log."""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_store
from processor.schemas import as_utc
from storage.reading_store import BoundedReadingStore

router = APIRouter(prefix="/api/readings")


@router.get("/latest")
async def latest(
    count: int = Query(default=10, ge=1, le=1000),
    store: BoundedReadingStore = Depends(get_store),
):
    """Most recent readings, oldest first."""
    return [r.to_record() for r in store.latest(count)]


@router.get("/latest/{kind}")
async def latest_by_kind(kind: str, store: BoundedReadingStore = Depends(get_store)):
    reading = store.latest_by_kind(kind)
    if reading is None:
        raise HTTPException(status_code=404, detail=f"no {kind} reading stored")
    return reading.to_record()


@router.get("/range")
async def in_range(
    start: datetime | None = Query(default=None, description="ISO-8601 start, inclusive"),
    end: datetime | None = Query(default=None, description="ISO-8601 end, inclusive"),
    store: BoundedReadingStore = Depends(get_store),
):
    """Readings within [start, end]. Defaults to the last hour."""
    end = as_utc(end) if end else datetime.now(timezone.utc)
    start = as_utc(start) if start else end - timedelta(hours=1)
    if start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")
    return [r.to_record() for r in store.in_range(start, end)]

# syncbridge/routes/sync.py
"""
Operator endpoints: ledger audit trail, on-demand syncs, drift checks and
manual stock adjustments.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.exceptions import DriftCheckInProgressError, NotFoundError, ValidationError
from syncbridge.dependencies import get_db, get_platforms
from syncbridge.integrations.base import PlatformInterface
from syncbridge.schemas.base import BaseSchema
from syncbridge.schemas.mapping import LedgerResponse, MappingRead, TransactionRead, normalize_sku
from syncbridge.services.mapping_registry import MappingRegistry
from syncbridge.services.reconciliation_service import DriftChecker
from syncbridge.services.sync_services import SyncService
from syncbridge.services.transaction_ledger import TransactionLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sync"])


class AdjustmentRequest(BaseSchema):
    sku: str
    delta: int
    reason: str = Field(min_length=1)
    performed_by: str = "admin"


@router.get("/ledger/{sku}", response_model=LedgerResponse)
async def get_ledger(
    sku: str,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """Audit trail for one SKU, newest first."""
    sku = normalize_sku(sku)
    mapping = await MappingRegistry(db).find_by_sku(sku)
    transactions = await TransactionLedger(db).history(sku, limit=limit)
    if mapping is None and not transactions:
        raise HTTPException(status_code=404, detail=f"No mapping or ledger entries for SKU {sku}")

    return LedgerResponse(
        sku=sku,
        mapping=MappingRead.model_validate(mapping) if mapping is not None else None,
        transactions=[TransactionRead.model_validate(tx) for tx in transactions],
    )


@router.post("/sync/drift-check")
async def drift_check(
    dry_run: bool = True,
    skus: Optional[List[str]] = Query(None),
    db: AsyncSession = Depends(get_db),
    platforms: Dict[str, PlatformInterface] = Depends(get_platforms),
    settings: Settings = Depends(get_settings),
):
    """Compare both storefronts; with dry_run=false mismatches are corrected."""
    checker = DriftChecker(db, platforms, settings)
    try:
        report = await checker.run(dry_run=dry_run, skus=skus)
    except DriftCheckInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return report.to_dict()


async def _run_sync(operation: str, skus, db, platforms, settings):
    service = SyncService(db, platforms, settings)
    logger.info(f"On-demand {operation} requested for {len(skus) if skus else 'all'} SKU(s)")
    runner = {
        "full": service.run_full_sync,
        "inventory": service.run_inventory_sync,
        "prices": service.run_price_sync,
    }[operation]
    report = await runner(skus)
    return report.to_dict()


@router.post("/sync/full")
async def sync_full(
    skus: Optional[List[str]] = Query(None),
    db: AsyncSession = Depends(get_db),
    platforms: Dict[str, PlatformInterface] = Depends(get_platforms),
    settings: Settings = Depends(get_settings),
):
    return await _run_sync("full", skus, db, platforms, settings)


@router.post("/sync/inventory")
async def sync_inventory(
    skus: Optional[List[str]] = Query(None),
    db: AsyncSession = Depends(get_db),
    platforms: Dict[str, PlatformInterface] = Depends(get_platforms),
    settings: Settings = Depends(get_settings),
):
    return await _run_sync("inventory", skus, db, platforms, settings)


@router.post("/sync/prices")
async def sync_prices(
    skus: Optional[List[str]] = Query(None),
    db: AsyncSession = Depends(get_db),
    platforms: Dict[str, PlatformInterface] = Depends(get_platforms),
    settings: Settings = Depends(get_settings),
):
    return await _run_sync("prices", skus, db, platforms, settings)


@router.post("/inventory/adjust")
async def adjust_inventory(
    request: AdjustmentRequest,
    db: AsyncSession = Depends(get_db),
    platforms: Dict[str, PlatformInterface] = Depends(get_platforms),
    settings: Settings = Depends(get_settings),
):
    """Apply an operator stock correction to both platforms."""
    service = SyncService(db, platforms, settings)
    try:
        outcome = await service.apply_manual_adjustment(
            request.sku, request.delta, request.reason, performed_by=request.performed_by
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return outcome.to_dict()

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from trade_reconciler.api.deps import get_cipher, get_db
from trade_reconciler.schemas.imports import ImportReport, ImportRequest
from trade_reconciler.services.encryption import FieldCipher
from trade_reconciler.services.import_pipeline import ImportPipeline
from trade_reconciler.services.types import SourceSystem

router = APIRouter(prefix="/api/imports", tags=["imports"])


@router.post("/{source_system}", response_model=ImportReport)
def import_records(
    source_system: SourceSystem,
    payload: ImportRequest,
    db: Session = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
) -> ImportReport:
    """
    Import one batch of raw broker records for a user.

    Bad records are counted and listed in the report; they never fail the
    request. Re-sending the same batch is a no-op.
    """
    if source_system is SourceSystem.CSV and not payload.column_mapping:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="column_mapping is required for csv imports",
        )

    pipeline = ImportPipeline(db, cipher)
    return pipeline.run(
        payload.records,
        source_system,
        payload.user_id,
        column_mapping=payload.column_mapping,
        default_account=payload.default_account,
    )

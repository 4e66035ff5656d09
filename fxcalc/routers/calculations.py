from datetime import datetime
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from fxcalc.db.dal import Database
from fxcalc.models.history import CalculationIn, CalculationOut, CalculationStepOut

router = APIRouter(prefix="/api/calculations", tags=["calculations"])

# Dependencies -----------------------------------------------------


def get_db(request: Request) -> Database:
    return Database(request.app.state.settings.db_path)


def require_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Owner of the request; session handling lives in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


# Helpers ----------------------------------------------------------


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _row_to_calculation_out(row: dict) -> CalculationOut:
    return CalculationOut(
        id=row["id"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
        initial_amount=row["initial_amount"],
        final_amount=row["final_amount"],
        currency_code=row["currency_code"],
        title=row.get("title"),
        user_id=row["user_id"],
        steps=[
            CalculationStepOut(
                id=s["id"],
                order=s["step_order"],
                description=s["description"],
                calculation_details=s["calculation_details"],
                result_intermediate=s["result_intermediate"],
                result_running_total=s["result_running_total"],
                explanation=s.get("explanation"),
                step_type=s["step_type"],
            )
            for s in row.get("steps", [])
        ],
    )


# Routes -----------------------------------------------------------
@router.get(
    "",
    response_model=Union[CalculationOut, List[CalculationOut]],
    response_model_by_alias=True,
    summary="List saved calculations or fetch one by id",
)
async def list_or_get_calculations(
    id: Optional[str] = Query(None),
    user_id: str = Depends(require_user),
    db: Database = Depends(get_db),
):
    if id:
        row = db.get_calculation(id, user_id)
        if not row:
            raise HTTPException(status_code=404, detail="Calculation not found")
        return _row_to_calculation_out(row)
    return [_row_to_calculation_out(r) for r in db.list_calculations(user_id)]


@router.post(
    "",
    response_model=CalculationOut,
    status_code=201,
    summary="Save a finished calculation",
)
async def save_calculation(
    payload: CalculationIn,
    user_id: str = Depends(require_user),
    db: Database = Depends(get_db),
):
    return _row_to_calculation_out(db.save_calculation(payload, user_id))


@router.delete("", summary="Delete a saved calculation")
async def delete_calculation(
    id: Optional[str] = Query(None),
    user_id: str = Depends(require_user),
    db: Database = Depends(get_db),
):
    if not id:
        raise HTTPException(status_code=400, detail="Missing calculation ID")
    if not db.delete_calculation(id, user_id):
        raise HTTPException(status_code=404, detail="Calculation not found")
    return {"success": True}

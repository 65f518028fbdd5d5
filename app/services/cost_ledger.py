"""
Cost ledger: staging of assessment materials and the single commit that
writes costs onto a request.

Staged materials live only in the ledger until ``commit`` runs as part of
the Submit Assessment transition; discarding or editing them never touches
the stored request.
"""

import logging
import math
from typing import Dict, Iterable, List, Union

from app.core.exceptions import IndexOutOfRangeError, InvalidAmountError, ValidationError
from app.models.database_models import MaintenanceRequest, RequestMaterial
from app.models.request_actions import MaterialInput

logger = logging.getLogger(__name__)

RequestRef = Union[MaintenanceRequest, str]


def _request_id(request: RequestRef) -> str:
    if isinstance(request, MaintenanceRequest):
        return request.id
    if isinstance(request, str) and request:
        return request
    raise ValidationError("A request or request id is required")


def validate_amount(value, field: str = "cost") -> float:
    """Coerce to float and reject negatives/NaN."""
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidAmountError(f"{field} must be a number, got {value!r}")
    if math.isnan(amount) or math.isinf(amount) or amount < 0:
        raise InvalidAmountError(f"{field} must be a non-negative number, got {value!r}")
    return amount


def compute_total(labor_cost: float, materials: Iterable[RequestMaterial]) -> float:
    return labor_cost + sum(m.cost for m in materials)


def is_consistent(request: MaintenanceRequest) -> bool:
    return request.total_cost == compute_total(request.labor_cost, request.materials_requested)


class CostLedger:
    def __init__(self) -> None:
        self._staging: Dict[str, List[MaterialInput]] = {}

    # ── staging ──────────────────────────────────────────────────────────────

    def add_material(self, request: RequestRef, name: str, cost) -> List[MaterialInput]:
        request_id = _request_id(request)
        if not name or not str(name).strip():
            raise ValidationError("Material name is required", request_id)
        amount = validate_amount(cost)
        staged = self._staging.setdefault(request_id, [])
        staged.append(MaterialInput(name=str(name).strip(), cost=amount))
        return list(staged)

    def remove_material(self, request: RequestRef, index: int) -> List[MaterialInput]:
        request_id = _request_id(request)
        staged = self._staging.get(request_id, [])
        if not isinstance(index, int) or index < 0 or index >= len(staged):
            raise IndexOutOfRangeError(
                f"No staged material at index {index} (have {len(staged)})", request_id
            )
        staged.pop(index)
        return list(staged)

    def staged_materials(self, request: RequestRef) -> List[MaterialInput]:
        return list(self._staging.get(_request_id(request), []))

    def discard(self, request: RequestRef) -> None:
        self._staging.pop(_request_id(request), None)

    # ── commit ───────────────────────────────────────────────────────────────

    @staticmethod
    def commit(
        request: MaintenanceRequest,
        labor_cost: float,
        materials: Iterable[MaterialInput],
        photos: Iterable[str],
    ) -> MaintenanceRequest:
        """Replace materials and labor, append photos, recompute the total."""
        labor = validate_amount(labor_cost, "labor_cost")

        committed: List[RequestMaterial] = []
        for offset, item in enumerate(materials, start=1):
            if not item.name or not item.name.strip():
                raise ValidationError("Material name is required", request.id)
            committed.append(
                RequestMaterial(id=offset, name=item.name.strip(), cost=validate_amount(item.cost))
            )

        new_photos = [p for p in photos if p]
        updated = request.model_copy(update={
            "labor_cost": labor,
            "materials_requested": committed,
            "total_cost": compute_total(labor, committed),
            "assessment_photos": [*request.assessment_photos, *new_photos],
        })
        logger.debug(
            "Committed assessment costs for %s: labor=%s materials=%s total=%s",
            request.id, labor, len(committed), updated.total_cost,
        )
        return updated

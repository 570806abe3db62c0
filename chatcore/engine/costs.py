import logging
from typing import Any, Mapping, Optional, Protocol

from pydantic import BaseModel

from chatcore.common.errors import InsufficientCreditsError
from chatcore.config.base.models import MODEL_COSTS

logger = logging.getLogger("ChatCore")


class ModelCostInfo(BaseModel):
    cost: int
    category: str
    description: str


DEFAULT_COST = ModelCostInfo(cost=1, category="cheap", description="Standard model")


def get_model_cost(
    model_id: str, costs: Optional[Mapping[str, Mapping[str, Any]]] = None
) -> ModelCostInfo:
    """Get the credit cost for a specific model (unknown ids cost 1)."""
    table = MODEL_COSTS if costs is None else costs
    entry = table.get(model_id)
    if entry is None:
        return DEFAULT_COST
    return ModelCostInfo(**entry)


def has_insufficient_credits(
    user_credits: int, model_id: str, costs: Optional[Mapping[str, Mapping[str, Any]]] = None
) -> bool:
    return user_credits < get_model_cost(model_id, costs).cost


class CreditLedger(Protocol):
    """Balance lookup provided by the billing layer; deduction happens there too."""

    async def get_balance(self, user_id: Optional[str]) -> int:
        ...


class UnlimitedCreditLedger:
    """Default ledger for deployments without billing."""

    async def get_balance(self, user_id: Optional[str]) -> int:
        return 10**9


async def ensure_affordable(
    ledger: CreditLedger,
    user_id: Optional[str],
    model_id: str,
    costs: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> ModelCostInfo:
    """Raises InsufficientCreditsError when the caller cannot afford ``model_id``."""
    info = get_model_cost(model_id, costs)
    balance = await ledger.get_balance(user_id)
    if balance < info.cost:
        logger.info(
            f"Rejecting request for '{model_id}': costs {info.cost}, balance {balance}"
        )
        raise InsufficientCreditsError(model_id, info.cost, balance)
    return info

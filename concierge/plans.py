from dataclasses import dataclass
from typing import Dict, Optional

BYOK = "BYOK"
STARTER = "STARTER"
PROFESSIONAL = "PROFESSIONAL"

DEFAULT_PLAN = STARTER


@dataclass(frozen=True)
class PlanConfig:
    code: str
    name: str
    price: float
    # None means unlimited
    max_conversations: Optional[int]
    has_custom_webhook: bool = False
    uses_own_model_key: bool = False

    @property
    def is_unlimited(self) -> bool:
        return self.max_conversations is None


PLANS: Dict[str, PlanConfig] = {
    BYOK: PlanConfig(
        code=BYOK,
        name="BYOK Plan",
        price=5.0,
        max_conversations=None,
        uses_own_model_key=True,
    ),
    STARTER: PlanConfig(
        code=STARTER,
        name="Starter Plan",
        price=25.0,
        max_conversations=1000,
    ),
    PROFESSIONAL: PlanConfig(
        code=PROFESSIONAL,
        name="Professional Plan",
        price=79.0,
        max_conversations=None,
        has_custom_webhook=True,
    ),
}

# legacy codes and billing display names
PLAN_ALIASES = {
    "FREE": STARTER,
    "BASIC": STARTER,
    "UNLIMITED": PROFESSIONAL,
    "BYOK PLAN": BYOK,
    "STARTER PLAN": STARTER,
    "PROFESSIONAL PLAN": PROFESSIONAL,
}


def normalize_plan_code(plan: Optional[str]) -> str:
    """Map any stored plan name onto one of the current plan codes"""
    if not plan or not isinstance(plan, str):
        return DEFAULT_PLAN

    key = plan.strip().upper()
    if key in PLANS:
        return key
    return PLAN_ALIASES.get(key, DEFAULT_PLAN)


def get_plan(plan: Optional[str]) -> PlanConfig:
    return PLANS[normalize_plan_code(plan)]


def next_upgrade(plan: Optional[str]) -> Optional[PlanConfig]:
    """The cheapest plan lifting the conversation ceiling, if any"""
    current = get_plan(plan)
    if current.is_unlimited:
        return None
    candidates = [p for p in PLANS.values() if p.is_unlimited and p.price > current.price]
    if not candidates:
        return None
    return min(candidates, key=lambda p: p.price)

from typing import Dict, Optional

PLAN_FREE = "free"
PLAN_PREMIUM = "premium"
PLAN_PRO = "pro"

TOKEN_LIMITS: Dict[str, int] = {
    PLAN_FREE: 1000,
    PLAN_PREMIUM: 10000,
    PLAN_PRO: 50000,
}


def normalize_plan_id(plan_id: Optional[str]) -> str:
    return str(plan_id or "").strip().lower()


def is_known_plan(plan_id: Optional[str]) -> bool:
    return normalize_plan_id(plan_id) in TOKEN_LIMITS


def quota_for(plan_id: Optional[str]) -> int:
    """Token ceiling for a plan; unknown or missing plans get the free tier."""
    return TOKEN_LIMITS.get(normalize_plan_id(plan_id), TOKEN_LIMITS[PLAN_FREE])

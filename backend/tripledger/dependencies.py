from functools import lru_cache

from .repositories import SupabaseExpenseRepository, SupabaseSettlementRepository
from .services.settlement import SettlementEngine


@lru_cache
def get_settlement_engine() -> SettlementEngine:
    """Engine backed by Supabase. Cached so every request shares the trip locks."""
    return SettlementEngine(
        expenses=SupabaseExpenseRepository(),
        settlements=SupabaseSettlementRepository(),
    )

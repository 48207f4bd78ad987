from app.business.deals.api import router
from app.business.deals.models import Deal
from app.business.deals.probability import ProbabilityFactors, calculate_probability
from app.business.deals.service import DealService, deal_service

__all__ = [
    "router",
    "Deal",
    "ProbabilityFactors",
    "calculate_probability",
    "DealService",
    "deal_service",
]

from app.business.ai_usage.api import router
from app.business.ai_usage.models import AIQuota, AIUsageRecord
from app.business.ai_usage.service import AIUsageService, ai_usage_service

__all__ = ["router", "AIQuota", "AIUsageRecord", "AIUsageService", "ai_usage_service"]

from app.business.contracts.api import router
from app.business.contracts.models import Contract
from app.business.contracts.service import ContractExpirationService, contract_service

__all__ = ["router", "Contract", "ContractExpirationService", "contract_service"]

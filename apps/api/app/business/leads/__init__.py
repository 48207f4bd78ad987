from app.business.leads.api import router
from app.business.leads.models import Lead, LeadAssignmentCursor, SalesRep
from app.business.leads.service import LeadAssignmentService, lead_assignment_service

__all__ = [
    "router",
    "Lead",
    "SalesRep",
    "LeadAssignmentCursor",
    "LeadAssignmentService",
    "lead_assignment_service",
]

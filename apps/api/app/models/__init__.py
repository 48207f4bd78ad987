from app.models.audit import AuditLog
from app.models.notification import NotificationMessage

__all__ = [
	"AuditLog",
	"NotificationMessage",
]

from salescrm.models.audit import AuditLog
from salescrm.crm.models import (
	CRMAccount,
	CRMContact,
	CRMDocument,
	CRMLead,
	CRMOpportunity,
	CRMRegion,
	CRMTask,
	CRMUser,
	CRMUserRegion,
)

__all__ = [
	"AuditLog",
	"CRMAccount",
	"CRMContact",
	"CRMDocument",
	"CRMLead",
	"CRMOpportunity",
	"CRMRegion",
	"CRMTask",
	"CRMUser",
	"CRMUserRegion",
]

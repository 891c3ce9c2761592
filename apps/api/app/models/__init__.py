from app.accounts.models import Organization, User
from app.authz.models import Permission, Role
from app.crm.models import (
	Customer,
	Event,
	File,
	Interaction,
	InternalNote,
	PipelineStage,
	Task,
)

__all__ = [
	"Customer",
	"Event",
	"File",
	"Interaction",
	"InternalNote",
	"Organization",
	"Permission",
	"PipelineStage",
	"Role",
	"Task",
	"User",
]

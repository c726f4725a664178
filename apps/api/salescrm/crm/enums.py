from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    SALES_REP = "Sales Rep"
    REGIONAL_LEAD = "Regional Lead"
    SUPER_ADMIN = "Super Admin"


class AccountStatus(StrEnum):
    PROSPECT = "Prospect"
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    PENDING_APPROVAL = "Pending Approval"


class OpportunityStage(StrEnum):
    PROSPECTING = "Prospecting"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"
    CLOSED_WON = "Closed Won"
    CLOSED_LOST = "Closed Lost"


TERMINAL_STAGES = frozenset({OpportunityStage.CLOSED_WON.value, OpportunityStage.CLOSED_LOST.value})


class LeadStatus(StrEnum):
    NEW = "New"
    CONTACTED = "Contacted"
    QUALIFIED = "Qualified"
    DISQUALIFIED = "Disqualified"
    NURTURE = "Nurture"
    CONVERTED = "Converted"


class RelatedEntityKind(StrEnum):
    LEAD = "Lead"
    ACCOUNT = "Account"
    OPPORTUNITY = "Opportunity"


class EntityKind(StrEnum):
    ACCOUNT = "account"
    LEAD = "lead"
    OPPORTUNITY = "opportunity"
    CONTACT = "contact"
    TASK = "task"
    DOCUMENT = "document"


def parse_role(value: str) -> Role | None:
    try:
        return Role(value)
    except ValueError:
        return None

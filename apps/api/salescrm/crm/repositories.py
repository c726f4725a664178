from __future__ import annotations

from salescrm.crm.enums import EntityKind
from salescrm.platform.security.repository import BaseRepository


class AccountRepository(BaseRepository):
    kind = EntityKind.ACCOUNT
    filter_fields = ("status", "region_id", "sales_rep_id")


class LeadRepository(BaseRepository):
    kind = EntityKind.LEAD
    filter_fields = ("status", "region_id", "owner_id")


class OpportunityRepository(BaseRepository):
    kind = EntityKind.OPPORTUNITY
    filter_fields = ("stage", "account_id", "owner_id")


class ContactRepository(BaseRepository):
    kind = EntityKind.CONTACT
    filter_fields = ("account_id",)


class TaskRepository(BaseRepository):
    kind = EntityKind.TASK
    filter_fields = ("status", "related_entity_type", "related_entity_id", "assigned_to_id")


class DocumentRepository(BaseRepository):
    kind = EntityKind.DOCUMENT
    filter_fields = ("status", "related_entity_type", "related_entity_id")

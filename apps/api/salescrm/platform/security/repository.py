from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import ColumnElement, Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from salescrm.crm.enums import EntityKind
from salescrm.metrics import observe_store_failure
from salescrm.platform.security.context import ActingUser
from salescrm.platform.security.errors import StoreUnavailableError
from salescrm.platform.security.scope import MODELS, ensure_access, list_filter


logger = logging.getLogger("salescrm.security")


class BaseRepository:
    """Entity store reads for one kind, always filtered through the scope engine."""

    kind: EntityKind = EntityKind.ACCOUNT
    filter_fields: tuple[str, ...] = ()

    @property
    def model(self) -> Any:
        return MODELS[self.kind]

    def scoped_query(self, session: Session, actor: ActingUser) -> Select[Any]:
        return select(self.model).where(list_filter(session, actor, self.kind))

    def list_where(
        self,
        session: Session,
        predicate: ColumnElement[bool],
        filters: dict[str, Any] | None = None,
        options: Sequence[Any] = (),
    ) -> list[Any]:
        stmt = select(self.model).where(predicate)
        stmt = self.apply_filters(stmt, filters or {})
        if options:
            stmt = stmt.options(*options)
        stmt = stmt.order_by(self.model.id)
        try:
            return list(session.scalars(stmt).unique().all())
        except SQLAlchemyError as exc:
            raise self._unavailable(exc) from exc

    def list_for(
        self,
        session: Session,
        actor: ActingUser,
        filters: dict[str, Any] | None = None,
        options: Sequence[Any] = (),
    ) -> list[Any]:
        return self.list_where(session, list_filter(session, actor, self.kind), filters, options)

    def get_by_id(self, session: Session, entity_id: int) -> Any | None:
        try:
            return session.get(self.model, entity_id)
        except SQLAlchemyError as exc:
            raise self._unavailable(exc) from exc

    def get_for(self, session: Session, actor: ActingUser, entity_id: int, *, action: str = "read") -> Any:
        ensure_access(session, actor, self.kind, entity_id, action=action)
        return self.get_by_id(session, entity_id)

    def apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        for field_name in self.filter_fields:
            value = filters.get(field_name)
            if value is None:
                continue
            stmt = stmt.where(getattr(self.model, field_name) == value)
        return stmt

    def _unavailable(self, exc: SQLAlchemyError) -> StoreUnavailableError:
        observe_store_failure(self.kind.value)
        logger.error("store.read_failed", extra={"entity_kind": self.kind.value, "error": str(exc)})
        return StoreUnavailableError(self.kind.value)

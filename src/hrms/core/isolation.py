"""Session-level tenant guards.

Two SQLAlchemy Session events back up the repository layer so that a query
written by hand against a tenant-owned model is still scoped:

- do_orm_execute: any ORM SELECT/UPDATE/DELETE touching a TenantOwned model
  raises NoActiveTenantError when no tenant is active, and otherwise gets a
  with_loader_criteria(tenant_id == active tenant) option. UPDATE may not
  assign tenant_id. INSERT rows get tenant_id from the context, and rows
  naming another tenant are refused. Statements marked
  with execution_options(tenancy_bypass=<reason>) are left alone; only
  UnscopedRepository sets that option.
- before_flush: new TenantOwned rows get tenant_id from the context, rows
  claiming another tenant are refused, and tenant_id never changes on
  existing rows.

The listeners are registered on the Session class, so they apply to every
AsyncSession in the process.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import Result, event, inspect
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from src.hrms.core.database import TenantOwned
from src.hrms.core.exceptions import NoActiveTenantError, TenantIsolationError
from src.hrms.core.tenant import TenantContext, current_tenant_or_none

logger = structlog.get_logger(__name__)

BYPASS_OPTION = "tenancy_bypass"


def _touches_tenant_owned(state: ORMExecuteState) -> bool:
    return any(
        mapper is not None and issubclass(mapper.class_, TenantOwned)
        for mapper in state.all_mappers
    )


def _column_key(key: Any) -> str | None:
    return key if isinstance(key, str) else getattr(key, "key", None)


def _values_clause(statement: Any) -> dict[str, Any]:
    """Inline .values() of a DML statement keyed by column name."""
    pairs = list((getattr(statement, "_values", None) or {}).items())
    pairs.extend(getattr(statement, "_ordered_values", None) or ())
    return {_column_key(key): getattr(value, "value", value) for key, value in pairs}


def _multi_values_rows(statement: Any) -> list[dict[str, Any]]:
    rows = []
    for group in getattr(statement, "_multi_values", None) or ():
        for row in group:
            rows.append({_column_key(key): getattr(value, "value", value) for key, value in dict(row).items()})
    return rows


def _parameter_rows(state: ORMExecuteState) -> list[dict[str, Any]]:
    params = state.parameters
    if isinstance(params, list):
        return [dict(row) for row in params]
    return [dict(params)] if params else []


def _model_name(state: ORMExecuteState) -> str:
    return ", ".join(m.class_.__name__ for m in state.all_mappers)


def _stamp_inserted_rows(state: ORMExecuteState, tenant: TenantContext | None) -> Result | None:
    """Fill in or check tenant_id on every row of an ORM INSERT.

    Rows passed as execute() parameters or through a single .values() call
    are stamped; a multi-row VALUES clause must name tenant_id on each row.
    """
    param_rows = _parameter_rows(state)
    inline = _values_clause(state.statement)
    rows = [{**inline, **row} for row in param_rows] or _multi_values_rows(state.statement) or [inline]

    for row in rows:
        claimed = row.get("tenant_id")
        if claimed is None:
            if tenant is None:
                raise NoActiveTenantError(
                    f"Cannot insert {_model_name(state)} without an active tenant or explicit tenant_id"
                )
        elif tenant is not None and str(claimed) != tenant.tenant_id:
            logger.error(
                "tenancy.cross_tenant_write_blocked",
                model=_model_name(state),
                active_tenant=tenant.tenant_id,
                row_tenant=str(claimed),
            )
            raise TenantIsolationError(
                f"Cannot insert {_model_name(state)} for tenant {claimed} while tenant {tenant.tenant_id} is active"
            )

    if tenant is None or all(row.get("tenant_id") is not None for row in rows):
        return None

    stamp = {"tenant_id": tenant.tenant_id}
    if param_rows:
        return state.invoke_statement(
            params=[stamp] * len(param_rows) if isinstance(state.parameters, list) else stamp
        )
    if getattr(state.statement, "_multi_values", None):
        raise TenantIsolationError(f"Multi-row inserts into {_model_name(state)} must set tenant_id on every row")
    state.statement = state.statement.values(**stamp)
    return None


def _refuse_tenant_reassignment(state: ORMExecuteState) -> None:
    assigned = set(_values_clause(state.statement))
    for row in _parameter_rows(state):
        assigned.update(row)
    if "tenant_id" in assigned:
        logger.error("tenancy.tenant_id_mutation_blocked", model=_model_name(state))
        raise TenantIsolationError(f"tenant_id of {_model_name(state)} is immutable")


@event.listens_for(Session, "do_orm_execute")
def _scope_tenant_queries(state: ORMExecuteState) -> Result | None:
    if not (state.is_select or state.is_insert or state.is_update or state.is_delete):
        return None
    if state.is_column_load or state.is_relationship_load:
        return None
    if state.execution_options.get(BYPASS_OPTION):
        return None
    if not _touches_tenant_owned(state):
        return None

    tenant = current_tenant_or_none()
    if state.is_insert:
        return _stamp_inserted_rows(state, tenant)

    if tenant is None:
        logger.error("tenancy.unscoped_query_blocked", mappers=[m.class_.__name__ for m in state.all_mappers])
        raise NoActiveTenantError("Query on a tenant-scoped model without an active tenant context")
    if state.is_update:
        _refuse_tenant_reassignment(state)

    tenant_id = tenant.tenant_id
    state.statement = state.statement.options(
        with_loader_criteria(
            TenantOwned,
            lambda cls: cls.tenant_id == tenant_id,
            include_aliases=True,
        )
    )
    return None


@event.listens_for(Session, "before_flush")
def _stamp_tenant_rows(session: Session, flush_context, instances) -> None:
    tenant = current_tenant_or_none()

    for obj in session.new:
        if not isinstance(obj, TenantOwned):
            continue
        if obj.tenant_id is None:
            if tenant is None:
                raise NoActiveTenantError(
                    f"Cannot create {type(obj).__name__} without an active tenant or explicit tenant_id"
                )
            obj.tenant_id = tenant.tenant_id
        elif tenant is not None and obj.tenant_id != tenant.tenant_id:
            logger.error(
                "tenancy.cross_tenant_write_blocked",
                model=type(obj).__name__,
                active_tenant=tenant.tenant_id,
                row_tenant=obj.tenant_id,
            )
            raise TenantIsolationError(
                f"{type(obj).__name__} belongs to tenant {obj.tenant_id}, "
                f"active tenant is {tenant.tenant_id}"
            )

    for obj in session.dirty:
        if not isinstance(obj, TenantOwned):
            continue
        history = inspect(obj).attrs.tenant_id.history
        if history.deleted and history.added and history.deleted[0] != history.added[0]:
            logger.error("tenancy.tenant_id_mutation_blocked", model=type(obj).__name__)
            raise TenantIsolationError(f"tenant_id of {type(obj).__name__} is immutable")

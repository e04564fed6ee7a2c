from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import Session, with_loader_criteria


@event.listens_for(Session, "do_orm_execute")
def _apply_authorization_filters(execute_state) -> None:
    """
    Transparent tenant scoping.

    This is the key piece that keeps handler query code unchanged:
        db.scalars(select(Patient)).all()
    still only returns rows the request's principal may see. Relationship and
    column loads inherit the criteria from the statement that loaded the parent.
    """

    if not execute_state.is_select:
        return
    if execute_state.is_column_load or execute_state.is_relationship_load:
        return
    if execute_state.execution_options.get("skip_authz_scoping", False):
        return

    principal = execute_state.session.info.get("principal")
    if principal is None:
        return

    # Local import to avoid cycles.
    from app.security.scoping import CLINIC_SCOPED_MODELS, scope_for  # noqa: WPS433 (local import)

    execute_state.statement = execute_state.statement.options(
        *(
            with_loader_criteria(model, scope_for(kind, principal), include_aliases=True)
            for kind, model in CLINIC_SCOPED_MODELS.items()
        )
    )

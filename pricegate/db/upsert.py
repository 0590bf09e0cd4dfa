from __future__ import annotations

from sqlalchemy.orm import Session


def upsert_row(session: Session, model, values: dict, key_columns: list[str]) -> None:
    """Single-statement insert-or-update keyed by the model's primary key."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        session.merge(model(**values))
        return

    stmt = insert(model).values(**values)
    updates = {k: stmt.excluded[k] for k in values if k not in key_columns}
    session.execute(stmt.on_conflict_do_update(index_elements=key_columns, set_=updates))

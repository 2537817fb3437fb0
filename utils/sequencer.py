# utils/sequencer.py
from sqlalchemy import text, select
from sqlalchemy.orm import Session

from models import DocCounter

ORDER_DOC_TYPE = "ORDER"


def next_seq(db: Session, doc_type: str, scope: str) -> int:
    """
    Atomic per-scope counter. Runs inside the caller's transaction, so the
    number is only consumed if the caller commits.
    """
    dialect = db.get_bind().dialect.name

    if dialect in ("postgresql", "sqlite"):
        # one statement: upsert + returning
        return db.execute(
            text("""
            INSERT INTO doc_counters (doc_type, scope, seq)
            VALUES (:t, :s, 1)
            ON CONFLICT (doc_type, scope)
            DO UPDATE SET seq = doc_counters.seq + 1
            RETURNING seq
            """),
            {"t": doc_type, "s": scope},
        ).scalar_one()

    # generic: lock the counter row
    q = (
        select(DocCounter)
        .where(DocCounter.doc_type == doc_type, DocCounter.scope == scope)
        .with_for_update()
    )
    row = db.execute(q).scalar_one_or_none()
    if row is None:
        row = DocCounter(doc_type=doc_type, scope=scope, seq=1)
        db.add(row)
    else:
        row.seq += 1
    db.flush()
    return row.seq


def format_order_number(seq: int) -> str:
    """1 -> "0.0001", 9999 -> "0.9999", 10000 -> "1.0000"."""
    return f"{seq // 10000}.{seq % 10000:04d}"


def next_order_number(db: Session, organization_id: int) -> str:
    return format_order_number(next_seq(db, ORDER_DOC_TYPE, str(organization_id)))

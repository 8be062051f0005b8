"""Append-only audit store backed by SQLAlchemy."""

from typing import Protocol

from sqlalchemy import and_, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from medgate.audit.models import (
    AuditEntry,
    AuditLog,
    AuditPage,
    AuditQuery,
    Base,
    as_utc,
    decode_cursor,
    encode_cursor,
)


class AuditStore(Protocol):
    """Capability the Audit Recorder writes to."""

    def append(self, entry: AuditEntry) -> None:
        ...

    def query(self, query: AuditQuery) -> AuditPage:
        ...


class SQLAlchemyAuditStore:
    """Audit store over a relational table.

    Only inserts and reads are exposed. Deleting expired rows is the job of
    an external reaper driven by ``retention_expiry``.
    """

    def __init__(self, engine: Engine, create_schema: bool = False) -> None:
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
        if create_schema:
            Base.metadata.create_all(engine)

    def append(self, entry: AuditEntry) -> None:
        session: Session = self.SessionLocal()
        try:
            session.add(AuditLog.from_entry(entry))
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def query(self, query: AuditQuery) -> AuditPage:
        stmt = select(AuditLog)
        if query.actor_id is not None:
            stmt = stmt.where(AuditLog.actor_id == query.actor_id)
        if query.resource_type is not None:
            stmt = stmt.where(AuditLog.resource_type == query.resource_type)
        if query.phi_accessed is not None:
            stmt = stmt.where(AuditLog.phi_accessed == query.phi_accessed)
        if query.start is not None:
            stmt = stmt.where(AuditLog.timestamp >= as_utc(query.start))
        if query.end is not None:
            stmt = stmt.where(AuditLog.timestamp <= as_utc(query.end))
        if query.cursor:
            position = decode_cursor(query.cursor)
            stmt = stmt.where(
                or_(
                    AuditLog.timestamp < position["ts"],
                    and_(
                        AuditLog.timestamp == position["ts"],
                        AuditLog.id < position["id"],
                    ),
                )
            )

        # one extra row tells us whether another page exists
        stmt = stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(
            query.limit + 1
        )

        with self.SessionLocal() as session:
            rows = session.execute(stmt).scalars().all()
            entries = [row.to_entry() for row in rows[: query.limit]]

        next_cursor = None
        if len(rows) > query.limit and entries:
            next_cursor = encode_cursor(entries[-1])
        return AuditPage(items=entries, next_cursor=next_cursor)


__all__ = ["AuditStore", "SQLAlchemyAuditStore"]

"""
Engine helpers.

Covers:
- get_session_factory() sessions are bound to the engine and keep state after commit
- SQLite connections enforce foreign keys
"""

import pytest
from sqlalchemy import select

from equipment_kernel.db.engine import get_engine, get_session_factory
from equipment_kernel.models.equipment import EquipmentGroup


class TestSessionFactory:
    def test_bound_to_engine(self, db_tables):
        session = get_session_factory()()
        try:
            assert session.get_bind() is get_engine()
        finally:
            session.close()

    def test_attributes_survive_commit(self, committed_session_factory):
        session = committed_session_factory()
        group = EquipmentGroup(code="SCOPE-01", name="Scoped", created_by="U-TEST")
        session.add(group)
        session.commit()
        assert "code" in group.__dict__
        assert group.code == "SCOPE-01"

        other = committed_session_factory()
        codes = set(other.execute(select(EquipmentGroup.code)).scalars())
        other.rollback()
        assert "SCOPE-01" in codes


class TestSqliteLocking:
    def test_foreign_keys_enforced(self, db_tables):
        engine = get_engine()
        if engine.dialect.name != "sqlite":
            pytest.skip("SQLite-specific")
        with engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1

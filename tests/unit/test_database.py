from unittest.mock import MagicMock, patch

import pytest

from marketplace import database


class TestSessionScope:
    def test_commits_and_closes(self):
        session = MagicMock()
        with patch.object(database, "SessionLocal", return_value=session):
            with database.session_scope() as scoped:
                assert scoped is session

        session.commit.assert_called_once()
        session.rollback.assert_not_called()
        session.close.assert_called_once()

    def test_rolls_back_and_reraises(self):
        session = MagicMock()
        with patch.object(database, "SessionLocal", return_value=session):
            with pytest.raises(RuntimeError):
                with database.session_scope():
                    raise RuntimeError("boom")

        session.commit.assert_not_called()
        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_public_names(self):
        assert set(database.__all__) == {
            "Base",
            "SessionLocal",
            "engine",
            "get_dialect_name",
            "session_scope",
        }

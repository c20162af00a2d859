from pathlib import Path

from streamlit.testing.v1 import AppTest

from jewel_analysis import db

APP_PATH = Path(__file__).resolve().parents[1] / "app.py"


class TrackedConnection:
    def __init__(self, connection):
        self._connection = connection
        self.closed = False

    def __getattr__(self, name):
        return getattr(self._connection, name)

    def __enter__(self):
        self._connection.__enter__()
        return self

    def __exit__(self, *exc_info):
        return self._connection.__exit__(*exc_info)

    def close(self):
        self.closed = True
        self._connection.close()


def test_each_run_closes_its_connections(tmp_path, monkeypatch):
    opened = []
    open_connection = db.get_connection

    def tracked_connection(db_path=None):
        connection = TrackedConnection(open_connection(db_path))
        opened.append(connection)
        return connection

    monkeypatch.setattr(db, "DB_PATH", tmp_path / "analysis.db")
    monkeypatch.setattr(db, "AUTH_DB_PATH", tmp_path / "auth.db")
    monkeypatch.setattr(db, "get_connection", tracked_connection)
    monkeypatch.delenv("GOLDAPI_KEY", raising=False)

    app = AppTest.from_file(str(APP_PATH), default_timeout=30)
    app.run()

    assert not app.exception
    assert app.subheader[0].value == "Sign in"

    app.session_state["auth_username"] = "alice"
    app.run()

    assert not app.exception
    assert len(opened) >= 3
    assert all(connection.closed for connection in opened)

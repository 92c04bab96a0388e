import pytest

from timebank.exceptions import PersistenceError
from timebank.storage import JsonFileStorage, MemoryStorage


def test_memory_storage_round_trip_and_counts_saves() -> None:
    storage = MemoryStorage()
    assert storage.load() is None

    storage.save({"users": [], "currentUserId": None})

    assert storage.load() == {"users": [], "currentUserId": None}
    assert storage.saves == 1


def test_memory_storage_rejects_unserialisable_blob() -> None:
    storage = MemoryStorage()

    with pytest.raises(PersistenceError):
        storage.save({"users": object()})
    assert storage.load() is None


def test_json_file_storage_writes_atomically(tmp_path) -> None:
    path = tmp_path / "nested" / "state.json"
    storage = JsonFileStorage(path)
    assert storage.load() is None

    storage.save({"users": [{"id": "1"}]})

    assert JsonFileStorage(path).load() == {"users": [{"id": "1"}]}
    assert not path.with_suffix(".json.tmp").exists()


def test_json_file_storage_reports_corrupt_file(tmp_path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        JsonFileStorage(path).load()


def test_sqlmodel_storage_upserts_single_row(tmp_path) -> None:
    pytest.importorskip("sqlmodel")
    from sqlmodel import Session, select

    from timebank.webapp.persistence import SQLModelStorage, StateRecord, make_engine

    engine = make_engine(str(tmp_path / "timebank.db"))
    storage = SQLModelStorage(engine, key="testState")
    assert storage.load() is None

    storage.save({"users": [], "currentUserId": None})
    storage.save({"users": [{"id": "1"}], "currentUserId": "1"})

    assert storage.load() == {"users": [{"id": "1"}], "currentUserId": "1"}
    with Session(engine) as session:
        rows = session.exec(select(StateRecord)).all()
    assert [row.k for row in rows] == ["testState"]

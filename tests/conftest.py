import pytest
from fastapi.testclient import TestClient

from backend.main import app, get_store
from database import FileStorage
from store import TuitionStore


@pytest.fixture
def storage(tmp_path):
    return FileStorage(tmp_path / "tuition.json")


@pytest.fixture
def store(storage):
    return TuitionStore(storage=storage)


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def priced_class(store):
    """A 500k class with two students (0% and 10% discount) and one held session in May 2024."""
    teacher = store.add_teacher({"name": "Ms. Lan", "ratePerHour": 200000})
    cls = store.add_class({"name": "IELTS 6.5", "priceVnd": 500000, "defaultDurationHrs": 1.5})
    store.set_class_teacher(cls["id"], teacher["id"])
    an = store.add_student({"name": "An"})
    binh = store.add_student({"name": "Binh"})
    store.enroll(an["id"], cls["id"], discount_pct=0)
    store.enroll(binh["id"], cls["id"], discount_pct=10)
    store.toggle_held(cls["id"], "2024-05-06")
    return {"class": cls, "teacher": teacher, "students": [an, binh]}

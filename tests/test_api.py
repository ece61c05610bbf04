import datetime

import pytest
from fastapi.testclient import TestClient
from loguru import logger

from partition_advisor import main
from partition_advisor.main import (
    app, get_analysis_backend, get_analyzer_config, get_db, get_session_factory,
)

from conftest import FakeCatalog, FakeSampler, day_range, make_columns, primary_key


@pytest.fixture
def client(session_factory, config):
    catalog = FakeCatalog(
        make_columns(("ID", "NUMBER"), ("SALE_DATE", "DATE")),
        constraints=[primary_key("ID", "SALES_FACT")],
        missing_tables=["GONE"],
    )
    sampler = FakeSampler({"SALE_DATE": day_range(datetime.date(2020, 1, 1), 1095, step=5)})

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_analyzer_config] = lambda: config
    app.dependency_overrides[get_analysis_backend] = lambda: (catalog, sampler)
    yield TestClient(app)
    app.dependency_overrides.clear()


def create(client, table="SALES_FACT", **extra):
    response = client.post("/tasks", json={"task_name": f"analyze {table}", "source_owner": "DWH",
                                           "source_table": table, **extra})
    assert response.status_code == 201
    return response.json()["taskid"]


class TestTaskEndpoints:
    def test_create_and_get(self, client):
        task_id = create(client, project_name="finance")

        response = client.get(f"/tasks/{task_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "PENDING"
        assert body["project_name"] == "finance"
        assert body["source_table"] == "SALES_FACT"

    def test_invalid_partition_type_is_rejected(self, client):
        response = client.post("/tasks", json={"task_name": "t", "source_table": "T", "partition_type": "ROUND"})
        assert response.status_code == 422

    def test_list_filters_by_status(self, client):
        create(client)
        create(client, table="GONE")
        client.post("/tasks/analyze-pending")

        failed = client.get("/tasks", params={"status": "FAILED"}).json()
        assert [t["source_table"] for t in failed] == ["GONE"]
        assert len(client.get("/tasks").json()) == 2

    def test_unknown_task(self, client):
        assert client.get("/tasks/nope").status_code == 404
        assert client.delete("/tasks/nope").status_code == 404
        assert client.post("/tasks/nope/analyze").status_code == 404

    def test_delete(self, client):
        task_id = create(client)
        assert client.delete(f"/tasks/{task_id}").status_code == 204
        assert client.get(f"/tasks/{task_id}").status_code == 404


class TestAnalysisEndpoints:
    def test_analyze_then_fetch_result(self, client):
        task_id = create(client)

        response = client.post(f"/tasks/{task_id}/analyze")
        assert response.status_code == 202
        assert response.json() == {"scheduled": [task_id]}

        task = client.get(f"/tasks/{task_id}").json()
        assert task["status"] == "ANALYZED"
        assert task["readiness"] == "READY"

        analysis = client.get(f"/tasks/{task_id}/analysis").json()
        assert analysis["recommended_strategy"] == "RANGE(SALE_DATE) INTERVAL MONTHLY"
        assert analysis["migration_method"] == "ONLINE"
        assert analysis["estimated_partitions"] == 36
        assert analysis["result"]["selected_column"] == "SALE_DATE"

    def test_analysis_before_run(self, client):
        task_id = create(client)
        assert client.get(f"/tasks/{task_id}/analysis").status_code == 404

    def test_failed_task_reports_error(self, client):
        task_id = create(client, table="GONE")
        client.post(f"/tasks/{task_id}/analyze")

        task = client.get(f"/tasks/{task_id}").json()
        assert task["status"] == "FAILED"
        assert task["error_message"].startswith("Analysis failed:")

    def test_analyze_pending_by_project(self, client):
        first = create(client, project_name="finance")
        create(client, project_name="sales")

        response = client.post("/tasks/analyze-pending", json={"project_name": "finance"})

        assert response.status_code == 202
        assert response.json() == {"scheduled": [first]}

    def test_cancel_idle_task(self, client):
        task_id = create(client)
        assert client.post(f"/tasks/{task_id}/cancel").status_code == 409

    def test_logs(self, client):
        task_id = create(client)
        response = client.get(f"/tasks/{task_id}/logs")
        assert response.status_code == 200
        assert response.json() == []


class TestLifespan:
    def test_log_sinks_are_removed_on_shutdown(self, tmp_path, monkeypatch):
        """Each start adds the file sink once and shutdown takes it away again."""
        log_file = tmp_path / "app.log"
        monkeypatch.setattr(main.settings, "log_file", str(log_file))
        monkeypatch.setattr(main, "create_db_and_tables", lambda: None)

        for run in range(2):
            with TestClient(app):
                logger.info(f"service run {run}")
        logger.info("after shutdown")

        lines = log_file.read_text().splitlines()
        assert sum("service run 0" in line for line in lines) == 1
        assert sum("service run 1" in line for line in lines) == 1
        assert not any("after shutdown" in line for line in lines)

    def test_entry_point_serves_app(self, monkeypatch):
        served = {}
        monkeypatch.setattr(main.settings, "port", 8123)
        monkeypatch.setattr(main.uvicorn, "run", lambda application, **kwargs: served.update(app=application, **kwargs))

        main.run()

        assert served == {"app": app, "host": main.settings.host, "port": 8123}

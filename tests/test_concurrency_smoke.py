import json
import os
from concurrent.futures import ThreadPoolExecutor

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")

from core.services import export_service, graph_service
from core.services.progress import ExportProgressNotifier, LocalBroker


def test_parallel_exports_are_independent(db_session):
    project = graph_service.create_entity(db_session, "Parallel", "Project")
    for index in range(5):
        child = graph_service.create_entity(db_session, f"Child {index}", "Task")
        graph_service.create_relation(db_session, child.id, project.id, "part_of")

    notifier = ExportProgressNotifier(LocalBroker())
    export_ids = ["parallel-a", "parallel-b"]
    with ThreadPoolExecutor(max_workers=2) as executor:
        results = list(
            executor.map(lambda export_id: export_service.run_export(export_id, [project.id], notifier), export_ids)
        )

    assert all(result["status"] == "complete" for result in results)
    assert all(result["nodes"] == 6 for result in results)
    for export_id in export_ids:
        with open(export_service.export_path(export_id), encoding="utf-8") as handle:
            assert len(json.load(handle)["root_nodes"][0]["children"]) == 5

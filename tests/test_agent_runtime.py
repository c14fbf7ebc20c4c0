from fastapi.testclient import TestClient

from coherex.agent_runtime.app import app

client = TestClient(app)


def test_health():
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_routes_registered():
    paths = {route.path for route in app.routes}
    assert "/api/agents/create" in paths
    assert "/api/agents/{agent_id}/sessions/{session_id}" in paths
    assert "/api/agents/{agent_id}/execute" in paths
    assert "/api/agents/{agent_id}/executions/{execution_id}" in paths

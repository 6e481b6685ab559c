"""Tests for application-level routes and wiring"""


class TestAppRoutes:
    """Tests for / and /health"""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["name"] == "Camera Streaming API"
        assert response.json()["status"] == "running"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert response.headers["X-Request-ID"]

    def test_streaming_routes_registered(self, client):
        paths = client.get("/openapi.json").json()["paths"]

        for path in (
            "/api/v1/streaming/rtsp/preview",
            "/api/v1/streaming/rtsp/detect",
            "/api/v1/streaming/rtsp/test",
            "/api/v1/streaming/rtsp/info",
            "/api/v1/streaming/nvr/health",
            "/api/v1/streaming/nvr/onvif",
            "/api/v1/streaming/cameras/stream",
            "/api/v1/streaming/mediamtx/deploy",
            "/api/v1/streaming/mediamtx/start",
        ):
            assert path in paths

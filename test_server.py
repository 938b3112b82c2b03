#!/usr/bin/env python3
"""
Test cases for the HTTP server.
Routes are exercised through the Flask test client; start/stop/restart and
port conflicts use a real socket on 127.0.0.1.
"""

import json
import shutil
import sys
import tempfile
import time
import urllib.request
from pathlib import Path
from urllib.parse import quote
from unittest.mock import patch

from channel_streamer import ChannelStreamer
from errors import PortInUseError, ServerBindError
from server import MovieServer, create_app

TICK = 0.02


def make_library():
    root = Path(tempfile.mkdtemp(prefix="movielocal_server_"))
    movies = root / "Movies"
    series = root / "Series"
    data = root / "data"
    (movies / "The_Matrix").mkdir(parents=True)
    (movies / "The_Matrix" / "matrix.mkv").write_bytes(b"MKV" * 5000)
    (movies / "The_Matrix" / "poster.png").write_bytes(b"\x89PNG-data")
    (series / "Show" / "Season 1").mkdir(parents=True)
    (series / "Show" / "Season 1" / "ep1.mp4").write_bytes(b"MP4")
    (series / "Show" / "Season 1" / "ep2.mp4").write_bytes(b"MP4")
    channels = root / "Channels"
    (channels / "channel_a").mkdir(parents=True)
    (channels / "channel_a" / "one.mp4").write_bytes(b"1")
    (channels / "channel_a" / "two.mp4").write_bytes(b"2")
    (channels / "channel_empty").mkdir()
    (root / "outside").mkdir()
    (root / "outside" / "secret.mp4").write_bytes(b"secret")
    (root / "outside" / "notes.txt").write_bytes(b"notes")
    data.mkdir()
    return root


def make_app(root, **extra):
    overrides = {
        "MOVIES_DIR": root / "Movies",
        "SERIES_DIR": root / "Series",
        "CHANNELS_DIR": root / "Channels",
        "DATA_DIR": root / "data",
        "SERVER_IP": "127.0.0.1",
        "PERSIST": False,
        "TESTING": True,
    }
    overrides.update(extra)
    streamer = ChannelStreamer(tick_interval=TICK, duration_probe=lambda p: 60_000)
    return create_app(overrides, streamer=streamer)


def stream_url(path, kind="stream"):
    return f"/api/{kind}/{quote(str(path))}"


def test_1_health_and_cors():
    """Test 1: Health answers with version and every response carries CORS headers."""
    print("\n=== Test 1: Health ===")
    root = make_library()
    try:
        client = make_app(root).test_client()
        before = int(time.time() * 1000)
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "ok" and body["version"] == "1.0"
        assert body["serverTime"] >= before
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "OPTIONS" in resp.headers["Access-Control-Allow-Methods"]
        print("  Health + CORS ✓")

        resp = client.open("/anything/at/all", method="OPTIONS")
        assert resp.status_code == 200
        assert resp.headers["Access-Control-Allow-Headers"] == "Content-Type, Authorization"
        print("  Preflight on any path ✓")

        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.get_data(as_text=True) == "Not Found"
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        print("  Unknown route -> 404 Not Found ✓")
    finally:
        shutil.rmtree(root)


def test_2_content_catalog():
    """Test 2: /api/content lists the library with absolute URLs."""
    print("\n=== Test 2: Content ===")
    root = make_library()
    try:
        app = make_app(root)
        resp = app.test_client().get("/api/content")
        assert resp.status_code == 200
        body = resp.get_json()

        assert [m["id"] for m in body["movies"]] == ["The_Matrix"]
        movie = body["movies"][0]
        base = f"http://127.0.0.1:{app.config['PORT']}"
        assert movie["videoUrl"].startswith(base + "/api/stream/")
        assert movie["thumbnailUrl"].startswith(base + "/api/thumbnail/")
        print("  Movie with URLs ✓")

        show = body["series"][0]
        assert show["id"] == "Show"
        assert [e["episodeNumber"] for e in show["seasons"][0]["episodes"]] == [1, 2]
        print("  Series with episodes ✓")
    finally:
        shutil.rmtree(root)


def test_3_stream_video():
    """Test 3: Existing .mkv streams with the right type and length."""
    print("\n=== Test 3: Stream video ===")
    root = make_library()
    try:
        client = make_app(root).test_client()
        path = (root / "Movies" / "The_Matrix" / "matrix.mkv").resolve()
        resp = client.get(stream_url(path))
        assert resp.status_code == 200, resp.status_code
        assert resp.mimetype == "video/x-matroska"
        assert resp.headers["Content-Length"] == str(path.stat().st_size)
        assert resp.headers["Accept-Ranges"] == "bytes"
        assert resp.data == path.read_bytes()
        print("  200 video/x-matroska, full body ✓")

        thumb = (root / "Movies" / "The_Matrix" / "poster.png").resolve()
        resp = client.get(stream_url(thumb, "thumbnail"))
        assert resp.status_code == 200 and resp.mimetype == "image/png"
        print("  Thumbnail image/png ✓")
    finally:
        shutil.rmtree(root)


def test_4_stream_not_found():
    """Test 4: Missing, directory and out-of-library paths all give a plain 404."""
    print("\n=== Test 4: Stream 404 ===")
    root = make_library()
    try:
        client = make_app(root).test_client()

        resp = client.get(stream_url(root / "Movies" / "nope.mp4"))
        assert resp.status_code == 404
        assert resp.get_data(as_text=True) == "Video not found"
        print("  Missing video ✓")

        resp = client.get(stream_url(root / "Movies"))
        assert resp.status_code == 404
        print("  Directory ✓")

        resp = client.get(stream_url(root / "outside" / "secret.mp4"))
        assert resp.status_code == 404
        print("  Outside media roots ✓")

        resp = client.get(stream_url(root / "Movies" / "missing.jpg", "thumbnail"))
        assert resp.status_code == 404
        assert resp.get_data(as_text=True) == "Thumbnail not found"
        print("  Missing thumbnail ✓")

        relaxed = make_app(root, STRICT_STREAM_PATHS=False).test_client()
        resp = relaxed.get(stream_url(root / "outside" / "secret.mp4"))
        assert resp.status_code == 200 and resp.data == b"secret"
        print("  Containment can be switched off ✓")
    finally:
        shutil.rmtree(root)


def test_5_clients_api():
    """Test 5: Register, heartbeat, watching, list and remove."""
    print("\n=== Test 5: Clients ===")
    root = make_library()
    try:
        client = make_app(root).test_client()

        resp = client.post("/api/clients/register", json={"deviceName": "TV"})
        assert resp.status_code == 400
        resp = client.post("/api/clients/register", data="not json", content_type="application/json")
        assert resp.status_code == 400
        print("  Bad registrations rejected ✓")

        resp = client.post("/api/clients/register", json={"clientId": "tv-1", "deviceName": "Living Room"})
        assert resp.status_code == 200
        assert resp.get_json() == {"status": "registered", "clientId": "tv-1"}
        client.post("/api/clients/register", json={"clientId": "tv-2"})

        assert client.post("/api/clients/tv-1/heartbeat").status_code == 200
        resp = client.post("/api/clients/tv-1/watching", json={"videoTitle": "The Matrix", "position": 4200})
        assert resp.status_code == 200

        listed = {c["clientId"]: c for c in client.get("/api/clients").get_json()["clients"]}
        assert set(listed) == {"tv-1", "tv-2"}
        assert listed["tv-1"]["currentlyWatching"] == "The Matrix"
        assert listed["tv-1"]["currentPosition"] == 4200
        assert listed["tv-1"]["ipAddress"] == "127.0.0.1"
        assert listed["tv-2"]["deviceName"] == "Unknown Device"
        print("  Register/heartbeat/watching ✓")

        assert client.delete("/api/clients/tv-2").status_code == 200
        listed = client.get("/api/clients").get_json()["clients"]
        assert [c["clientId"] for c in listed] == ["tv-1"]
        print("  Remove ✓")
    finally:
        shutil.rmtree(root)


def test_6_progress_api():
    """Test 6: Watch progress save, read and completion."""
    print("\n=== Test 6: Progress ===")
    root = make_library()
    try:
        client = make_app(root).test_client()
        assert client.get("/api/progress/The_Matrix").status_code == 404

        resp = client.post("/api/progress/The_Matrix", json={"position": 60000, "duration": 7200000})
        assert resp.status_code == 200
        progress = client.get("/api/progress/The_Matrix").get_json()
        assert progress["videoId"] == "The_Matrix"
        assert progress["position"] == 60000 and progress["duration"] == 7200000
        assert progress["completed"] is False
        print("  Saved and read back ✓")

        assert client.post("/api/progress/The_Matrix/completed").status_code == 200
        assert client.get("/api/progress/The_Matrix").get_json()["completed"] is True
        print("  Marked completed ✓")

        resp = client.post("/api/progress/The_Matrix", json={"position": "abc"})
        assert resp.status_code == 400
        print("  Bad position rejected ✓")
    finally:
        shutil.rmtree(root)


def test_7_channels_api():
    """Test 7: Channel definition, start, live state, stop and delete."""
    print("\n=== Test 7: Channels ===")
    root = make_library()
    app = make_app(root)
    try:
        client = app.test_client()
        folder = str(root / "Channels" / "channel_a")

        resp = client.post("/api/channels", json={"id": "retro", "name": "Retro", "folderPaths": [folder]})
        assert resp.status_code == 200 and resp.get_json()["channelId"] == "retro"
        channels = client.get("/api/channels").get_json()["channels"]
        assert [c["id"] for c in channels] == ["retro"]
        assert channels[0]["isActive"] is False
        print("  Created ✓")

        assert client.get("/api/channels/retro/state").status_code == 404
        assert client.post("/api/channels/retro/start").status_code == 200
        assert client.post("/api/channels/retro/start").status_code == 200, "Second start is a no-op"
        state = client.get("/api/channels/retro/state").get_json()
        assert state["channelId"] == "retro"
        assert state["currentVideoIndex"] == 0
        assert state["totalVideos"] == 2
        assert state["currentVideoPath"].endswith("one.mp4")
        assert state["currentVideoUrl"].startswith("http://127.0.0.1:")
        assert client.get("/api/channels/retro").get_json()["isActive"] is True
        print("  Started, state published ✓")

        assert client.post("/api/channels/retro/stop").status_code == 200
        assert client.get("/api/channels/retro/state").status_code == 404
        assert client.get("/api/channels/retro").get_json()["isActive"] is False
        print("  Stopped ✓")

        client.post("/api/channels", json={"id": "empty", "folderPaths": [str(root / "Channels" / "channel_empty")]})
        resp = client.post("/api/channels/empty/start")
        assert resp.status_code == 409
        assert client.post("/api/channels/ghost/start").status_code == 404
        print("  Empty -> 409, unknown -> 404 ✓")

        assert client.delete("/api/channels/retro").status_code == 200
        assert client.get("/api/channels/retro").status_code == 404
        assert client.post("/api/channels", json={"folderPaths": 5}).status_code == 400
        print("  Deleted, bad definition rejected ✓")

        # Channel library folder is a media root
        video = (root / "Channels" / "channel_a" / "two.mp4").resolve()
        client.post("/api/channels", json={"id": "retro", "folderPaths": [folder]})
        assert client.get(stream_url(video)).status_code == 200
        print("  Channel folder streamable ✓")
    finally:
        app.extensions["movielocal"].shutdown()
        shutil.rmtree(root)


def test_8_real_server_restart_and_port_conflict():
    """Test 8: Start on a real port, refuse a second bind, stop, start again."""
    print("\n=== Test 8: Start/stop/restart ===")
    root = make_library()
    server = MovieServer(app=make_app(root, HOST="127.0.0.1", PORT=0))
    other = None
    try:
        server.start()
        assert server.is_running and server.port > 0
        port = server.port
        with urllib.request.urlopen(f"http://127.0.0.1:{port}/api/health", timeout=5) as resp:
            assert json.loads(resp.read())["status"] == "ok"
        print(f"  Serving on {port} ✓")

        other = MovieServer(app=make_app(root, HOST="127.0.0.1", PORT=port))
        try:
            other.start()
            raise AssertionError("Expected PortInUseError")
        except PortInUseError as e:
            assert e.port == port
        assert not other.is_running
        print("  Second bind refused, stays stopped ✓")

        server.stop()
        assert not server.is_running
        server.stop()  # idempotent
        print("  Stopped ✓")

        server.start()
        assert server.port == port
        with urllib.request.urlopen(f"http://127.0.0.1:{port}/api/health", timeout=5) as resp:
            assert resp.status == 200
        print("  Restarted on the same port ✓")
    finally:
        server.stop()
        if other is not None:
            other.stop()
        shutil.rmtree(root)


def test_9_active_channels_resume_on_start():
    """Test 9: Channels marked active are started again when the server starts."""
    print("\n=== Test 9: Resume channels ===")
    root = make_library()
    server = MovieServer(app=make_app(root, HOST="127.0.0.1", PORT=0))
    try:
        services = server.services
        services.channels.save_channel({
            "id": "retro", "name": "Retro", "description": "", "thumbnailUrl": "",
            "folderPaths": [str(root / "Channels" / "channel_a")], "isActive": True, "createdAt": 0,
        })
        services.channels.save_channel({
            "id": "empty", "name": "Empty", "description": "", "thumbnailUrl": "",
            "folderPaths": [str(root / "Channels" / "channel_empty")], "isActive": True, "createdAt": 0,
        })

        server.start()
        assert services.streamer.is_channel_active("retro")
        assert not services.streamer.is_channel_active("empty")
        assert services.channels.get_channel("empty")["isActive"] is False
        print("  retro resumed, empty deactivated ✓")

        server.stop()
        assert services.streamer.active_channel_ids() == []
        assert services.channels.get_channel("retro")["isActive"] is True
        server.start()
        assert services.streamer.is_channel_active("retro")
        print("  Resumed again after restart ✓")
    finally:
        server.stop()
        shutil.rmtree(root)


def test_10_channel_definitions_cannot_widen_containment():
    """Test 10: Client-submitted channels pointing outside the library are refused."""
    print("\n=== Test 10: Channel definitions vs containment ===")
    root = make_library()
    app = make_app(root)
    try:
        client = app.test_client()
        secret = (root / "outside" / "secret.mp4").resolve()
        assert client.get(stream_url(secret)).status_code == 404

        resp = client.post("/api/channels", json={"id": "x", "folderPaths": ["/"]})
        assert resp.status_code == 400
        assert client.get(stream_url(secret)).status_code == 404
        print("  folderPaths [\"/\"] refused, file stays hidden ✓")

        resp = client.post("/api/channels", json={
            "id": "y", "folderPaths": [str(root / "Channels" / "channel_a")],
            "thumbnailUrl": "/etc/passwd",
        })
        assert resp.status_code == 400
        assert client.get(stream_url("/etc/passwd", "thumbnail")).status_code == 404
        print("  Outside thumbnail refused ✓")

        resp = client.post("/api/channels", json={
            "id": "z", "folderPaths": [str(root / "Channels" / "channel_a" / ".." / ".." / "outside")],
        })
        assert resp.status_code == 400
        assert client.get("/api/channels").get_json()["channels"] == []
        print("  .. escape refused, nothing saved ✓")
    finally:
        app.extensions["movielocal"].shutdown()
        shutil.rmtree(root)


def test_11_running_channel_exposes_only_its_playlist():
    """Test 11: A running channel outside the library unlocks its own videos and nothing else."""
    print("\n=== Test 11: Playlist files streamable while running ===")
    root = make_library()
    app = make_app(root)
    try:
        services = app.extensions["movielocal"]
        services.channels.save_channel({
            "id": "ops", "name": "Ops", "description": "", "thumbnailUrl": "",
            "folderPaths": [str(root / "outside")], "isActive": False, "createdAt": 0,
        })
        client = app.test_client()
        secret = (root / "outside" / "secret.mp4").resolve()
        notes = (root / "outside" / "notes.txt").resolve()

        assert client.get(stream_url(secret)).status_code == 404
        assert client.post("/api/channels/ops/start").status_code == 200
        resp = client.get(stream_url(secret))
        assert resp.status_code == 200 and resp.data == b"secret"
        assert client.get(stream_url(notes)).status_code == 404
        print("  Playlist file 200, sibling 404 ✓")

        assert client.post("/api/channels/ops/stop").status_code == 200
        assert client.get(stream_url(secret)).status_code == 404
        print("  Hidden again after stop ✓")
    finally:
        app.extensions["movielocal"].shutdown()
        shutil.rmtree(root)


def test_12_stream_open_errors():
    """Test 12: Unreadable files are 404, other open failures are a plain 500."""
    print("\n=== Test 12: Open errors ===")
    root = make_library()
    try:
        client = make_app(root).test_client()
        path = (root / "Movies" / "The_Matrix" / "matrix.mkv").resolve()

        with patch("streaming.open", side_effect=PermissionError(13, "Permission denied"), create=True):
            resp = client.get(stream_url(path))
        assert resp.status_code == 404
        assert resp.get_data(as_text=True) == "Video not found"
        print("  Permission denied -> 404 ✓")

        with patch("streaming.open", side_effect=OSError(5, "Input/output error"), create=True):
            resp = client.get(stream_url(path))
        assert resp.status_code == 500
        assert resp.mimetype == "text/plain"
        assert resp.get_data(as_text=True).startswith("Error streaming file")
        print("  EIO -> 500 ✓")
    finally:
        shutil.rmtree(root)


def test_13_unassignable_address_is_not_port_in_use():
    """Test 13: Binding an address this host doesn't own is a bind error, not a busy port."""
    print("\n=== Test 13: Bind error ===")
    root = make_library()
    server = MovieServer(app=make_app(root, HOST="203.0.113.1", PORT=0))
    try:
        try:
            server.start()
            raise AssertionError("Expected ServerBindError")
        except PortInUseError:
            raise AssertionError("Unassignable address reported as port in use")
        except ServerBindError as e:
            assert e.host == "203.0.113.1"
        assert not server.is_running
        print("  ServerBindError, stays stopped ✓")
    finally:
        server.stop()
        shutil.rmtree(root)


def run_all_tests():
    """Run all tests and report results."""
    print("=" * 60)
    print("HTTP SERVER TESTS")
    print("=" * 60)

    tests = [
        test_1_health_and_cors,
        test_2_content_catalog,
        test_3_stream_video,
        test_4_stream_not_found,
        test_5_clients_api,
        test_6_progress_api,
        test_7_channels_api,
        test_8_real_server_restart_and_port_conflict,
        test_9_active_channels_resume_on_start,
        test_10_channel_definitions_cannot_widen_containment,
        test_11_running_channel_exposes_only_its_playlist,
        test_12_stream_open_errors,
        test_13_unassignable_address_is_not_port_in_use,
    ]

    passed = 0
    failures = []
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            failures.append((test.__name__, f"{type(e).__name__}: {e}"))
            print(f"  Test FAILED: {e}")

    print("\n" + "=" * 60)
    print(f"RESULTS: {passed} passed, {len(failures)} failed")
    print("=" * 60)
    for name, error in failures:
        print(f"  - {name}: {error}")
    return not failures


if __name__ == "__main__":
    sys.exit(0 if run_all_tests() else 1)

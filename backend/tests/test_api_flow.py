import pytest
from httpx import AsyncClient

from engine.encoder import FFmpegEncoder
from engine.job_queue import JobQueue
from engine.lifecycle import Failed, Started
from models.job import JobStatus
from utils.exceptions import CapacityError, TranscodeError


@pytest.fixture
def fixed_duration(monkeypatch):
    """Make duration probing deterministic regardless of a local ffprobe."""
    async def _duration(self, file_path):
        return 42.5
    monkeypatch.setattr(FFmpegEncoder, "probe_duration", _duration)


async def make_failed_job(store, track, message="ffmpeg exited with code 1"):
    job = await store.create(track.id, track.quality, track.file_path)
    await store.apply(job.id, Started())
    return await store.apply(job.id, Failed(message))


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test the health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "app" in data
    assert "queue_size" in data


@pytest.mark.asyncio
async def test_track_upload(client: AsyncClient, fixed_duration):
    """Test uploading an audio file."""
    files = {"file": ("my song.mp3", b"dummy audio content", "audio/mpeg")}
    response = await client.post("/api/tracks/upload", files=files, data={"user_id": "user-1"})

    assert response.status_code == 200, f"Upload failed: {response.text}"
    data = response.json()
    assert data["title"] == "my song"
    assert data["artist"] == "Unknown Artist"
    assert data["duration"] == 42.5
    assert data["mime_type"] == "audio/mpeg"
    assert data["size"] == len(b"dummy audio content")
    assert "job_id" not in data

    fetched = await client.get(f"/api/tracks/{data['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["user_id"] == "user-1"


@pytest.mark.asyncio
async def test_upload_survives_unknown_duration(client: AsyncClient, monkeypatch):
    async def _duration(self, file_path):
        raise TranscodeError("Failed to get audio duration: invalid data")
    monkeypatch.setattr(FFmpegEncoder, "probe_duration", _duration)

    files = {"file": ("take.wav", b"not really wav", "audio/wav")}
    response = await client.post("/api/tracks/upload", files=files, data={"user_id": "user-1"})

    assert response.status_code == 200
    assert response.json()["duration"] is None


@pytest.mark.asyncio
async def test_upload_with_transcode_queues_job(client: AsyncClient, fixed_duration):
    files = {"file": ("speech.flac", b"dummy content", "audio/flac")}
    response = await client.post(
        "/api/tracks/upload",
        files=files,
        data={"user_id": "user-2", "title": "Speech", "quality": "low", "transcode": "true"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["title"] == "Speech"
    assert data["job_id"]

    job_res = await client.get(f"/api/jobs/{data['job_id']}")
    assert job_res.status_code == 200
    job = job_res.json()
    assert job["status"] == "pending"
    assert job["quality"] == "low"
    assert job["track_id"] == data["id"]


@pytest.mark.asyncio
async def test_upload_rejects_unsupported_extension(client: AsyncClient):
    files = {"file": ("notes.txt", b"hello", "text/plain")}
    response = await client.post("/api/tracks/upload", files=files, data={"user_id": "user-1"})

    assert response.status_code == 400
    assert response.json()["type"] == "ValidationError"


@pytest.mark.asyncio
async def test_submit_and_poll_job(client: AsyncClient, make_track):
    """
    Test the job lifecycle over HTTP:
    1. Submit a transcode
    2. Check status
    3. Find it in the listings
    """
    track = await make_track()

    submit_res = await client.post("/api/jobs/", json={"track_id": track.id, "quality": "medium"})
    assert submit_res.status_code == 200
    data = submit_res.json()
    assert data["status"] == "pending"
    assert data["message"] == "Transcode queued"
    job_id = data["job_id"]

    status_res = await client.get(f"/api/jobs/{job_id}")
    assert status_res.status_code == 200
    job = status_res.json()
    assert job["progress"] == 0
    assert job["output_path"] is None
    assert job["error"] is None

    listed = await client.get("/api/jobs/", params={"status": "pending"})
    assert [j["id"] for j in listed.json()] == [job_id]

    track_jobs = await client.get(f"/api/tracks/{track.id}/jobs")
    assert [j["id"] for j in track_jobs.json()] == [job_id]


@pytest.mark.asyncio
async def test_submit_defaults_to_high_quality(client: AsyncClient, make_track):
    track = await make_track()
    response = await client.post("/api/jobs/", json={"track_id": track.id})
    assert response.json()["job"]["quality"] == "high"


@pytest.mark.asyncio
async def test_submit_validation_errors(client: AsyncClient, make_track):
    track = await make_track()

    bad_quality = await client.post("/api/jobs/", json={"track_id": track.id, "quality": "lossless"})
    assert bad_quality.status_code == 400
    assert "lossless" in bad_quality.json()["detail"]

    unknown_track = await client.post("/api/jobs/", json={"track_id": "nope", "quality": "low"})
    assert unknown_track.status_code == 400

    bad_filter = await client.get("/api/jobs/", params={"status": "queued"})
    assert bad_filter.status_code == 400


@pytest.mark.asyncio
async def test_unknown_job_returns_404(client: AsyncClient):
    assert (await client.get("/api/jobs/missing")).status_code == 404
    assert (await client.post("/api/jobs/missing/cancel")).status_code == 404
    assert (await client.post("/api/jobs/missing/retry")).status_code == 404
    assert (await client.get("/api/tracks/missing")).status_code == 404


@pytest.mark.asyncio
async def test_cancel_pending_job(client: AsyncClient, make_track):
    track = await make_track()
    job_id = (await client.post("/api/jobs/", json={"track_id": track.id})).json()["job_id"]

    response = await client.post(f"/api/jobs/{job_id}/cancel")
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Job canceled"
    assert data["job"]["status"] == "failed"
    assert data["job"]["error"] == "cancelled"

    again = await client.post(f"/api/jobs/{job_id}/cancel")
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_retry_failed_job_creates_new_job(client: AsyncClient, make_track, store):
    track = await make_track()
    failed = await make_failed_job(store, track)

    response = await client.post(f"/api/jobs/{failed.id}/retry")
    assert response.status_code == 200
    data = response.json()
    assert data["retried_from"] == failed.id
    assert data["job_id"] != failed.id
    assert data["status"] == "pending"

    # The original job stays failed
    assert (await store.get(failed.id)).status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_retry_rejects_live_job(client: AsyncClient, make_track):
    track = await make_track()
    job_id = (await client.post("/api/jobs/", json={"track_id": track.id})).json()["job_id"]

    response = await client.post(f"/api/jobs/{job_id}/retry")
    assert response.status_code == 409
    assert response.json()["type"] == "ConflictError"


@pytest.mark.asyncio
async def test_list_tracks_by_user(client: AsyncClient, make_track):
    await make_track(title="Mine", user_id="alice")
    await make_track(title="Theirs", user_id="bob")

    response = await client.get("/api/tracks/", params={"user_id": "alice"})
    assert response.status_code == 200
    assert [t["title"] for t in response.json()] == ["Mine"]


@pytest.mark.asyncio
async def test_delete_track_cancels_jobs_and_removes_files(client: AsyncClient, make_track, store):
    track = await make_track()
    job_id = (await client.post("/api/jobs/", json={"track_id": track.id})).json()["job_id"]

    response = await client.delete(f"/api/tracks/{track.id}")
    assert response.status_code == 200
    assert response.json()["cancelled_jobs"] == 1

    assert (await client.get(f"/api/tracks/{track.id}")).status_code == 404
    assert (await client.get(f"/api/jobs/{job_id}")).status_code == 404
    assert not (await store.list_jobs(track_id=track.id))


@pytest.mark.asyncio
async def test_admin_stats(client: AsyncClient, make_track, store):
    track = await make_track()
    await client.post("/api/jobs/", json={"track_id": track.id, "quality": "low"})
    await make_failed_job(store, track)

    response = await client.get("/api/admin/stats")
    assert response.status_code == 200
    data = response.json()
    assert data["total_tracks"] == 1
    assert data["jobs"]["pending"] == 1
    assert data["jobs"]["failed"] == 1
    assert data["queue"]["pending"] == 1
    assert data["queue"]["running"] is False


@pytest.mark.asyncio
async def test_admin_retry_and_clear_failed(client: AsyncClient, make_track, store):
    track = await make_track()
    await make_failed_job(store, track, "boom")
    await make_failed_job(store, track, "bang")

    retried = await client.post("/api/admin/retry-failed")
    assert retried.status_code == 200
    assert retried.json()["retried_count"] == 2
    assert retried.json()["total_failed"] == 2
    assert (await store.count_by_status())["pending"] == 2

    cleared = await client.post("/api/admin/clear-failed")
    assert cleared.status_code == 200
    assert cleared.json()["cleared_count"] == 2

    counts = await store.count_by_status()
    assert counts["failed"] == 0
    assert counts["pending"] == 2


@pytest.mark.asyncio
async def test_upload_with_transcode_on_full_queue_stores_nothing(
    client: AsyncClient, service, store, make_track, retry_policy, temp_dirs, fixed_duration
):
    existing = await make_track()
    service.queue = JobQueue(store=store, concurrency=1, retry_policy=retry_policy, max_size=1)
    await service.submit(existing.id, "low")
    uploads_before = sorted(p.name for p in (temp_dirs / "uploads").iterdir())

    files = {"file": ("late.mp3", b"dummy content", "audio/mpeg")}
    response = await client.post(
        "/api/tracks/upload", files=files, data={"user_id": "user-1", "transcode": "true"}
    )

    assert response.status_code == 503
    assert response.json()["type"] == "CapacityError"
    tracks = (await client.get("/api/tracks/")).json()
    assert [t["id"] for t in tracks] == [existing.id]
    assert sorted(p.name for p in (temp_dirs / "uploads").iterdir()) == uploads_before


@pytest.mark.asyncio
async def test_upload_rolled_back_when_submit_loses_capacity_race(
    client: AsyncClient, service, monkeypatch, temp_dirs, fixed_duration
):
    async def _full(track_id, quality):
        raise CapacityError()
    monkeypatch.setattr(service, "submit", _full)

    files = {"file": ("race.mp3", b"dummy content", "audio/mpeg")}
    response = await client.post(
        "/api/tracks/upload", files=files, data={"user_id": "user-1", "transcode": "true"}
    )

    assert response.status_code == 503
    assert (await client.get("/api/tracks/")).json() == []
    assert list((temp_dirs / "uploads").iterdir()) == []

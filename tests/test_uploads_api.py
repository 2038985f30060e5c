"""HTTP tests for the upload lifecycle endpoints."""

from app.core.config import RouteClass
from app.core.rate_limit import RateLimitRule, rate_limiter


def _init(client, headers, name="report.pdf", content_type="application/pdf"):
    return client.post(
        "/api/files/init-multipart",
        json={"originalName": name, "contentType": content_type},
        headers=headers,
    )


def _upload(client, headers, started, part_number, data):
    return client.post(
        "/api/files/upload-multipart",
        data={"uploadId": started["uploadId"], "partNumber": str(part_number), "key": started["key"]},
        files={"file": ("blob", data, "application/octet-stream")},
        headers=headers,
    )


def test_full_upload_flow(client, store, user, headers_for):
    headers = headers_for(user)

    response = _init(client, headers)
    assert response.status_code == 200
    started = response.json()
    assert started["key"] == f"uploads/{user.id}/report.pdf"

    first = _upload(client, headers, started, 1, b"hello ")
    second = _upload(client, headers, started, 2, b"world")
    assert first.status_code == 200
    assert first.json()["partNumber"] == 1
    assert second.status_code == 200

    response = client.post(
        "/api/files/complete-multipart",
        json={
            "originalName": "report.pdf",
            "uploadId": started["uploadId"],
            "key": started["key"],
            "contentType": "application/pdf",
            "size": 11,
            "parts": [
                {"partNumber": 2, "etag": second.json()["etag"]},
                {"partNumber": 1, "etag": first.json()["etag"]},
            ],
        },
        headers=headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["file"]["name"] == "report.pdf"
    assert body["file"]["size"] == "11"
    assert body["file"]["path"] == started["key"]
    assert store.objects[started["key"]] == b"hello world"


def test_successful_response_carries_rate_limit_headers(client, user, headers_for):
    response = _init(client, headers_for(user))

    assert response.headers["X-RateLimit-Limit"] == "50"
    assert response.headers["X-RateLimit-Remaining"] == "49"
    assert 0 < int(response.headers["X-RateLimit-Reset"]) <= 60


def test_upload_route_class_is_rate_limited(client, user, headers_for, monkeypatch):
    monkeypatch.setitem(rate_limiter.rules, RouteClass.UPLOAD, RateLimitRule(60, 2))
    headers = headers_for(user)

    assert _init(client, headers, name="a.txt").status_code == 200
    assert _init(client, headers, name="b.txt").status_code == 200
    response = _init(client, headers, name="c.txt")

    assert response.status_code == 429
    body = response.json()
    assert body["success"] is False
    assert body["kind"] == "rate_limited"
    assert 0 < body["reset"] <= 60
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_limits_are_per_user(client, user, other_user, headers_for, monkeypatch):
    monkeypatch.setitem(rate_limiter.rules, RouteClass.UPLOAD, RateLimitRule(60, 1))

    assert _init(client, headers_for(user)).status_code == 200
    assert _init(client, headers_for(user)).status_code == 429
    assert _init(client, headers_for(other_user)).status_code == 200


def test_missing_token_is_unauthorized(client):
    response = client.post(
        "/api/files/init-multipart",
        json={"originalName": "a.txt", "contentType": "text/plain"},
    )

    assert response.status_code == 401
    assert response.json()["kind"] == "auth"


def test_garbage_token_is_unauthorized(client):
    response = _init(client, {"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_missing_fields_are_client_input(client, user, headers_for):
    response = client.post(
        "/api/files/init-multipart",
        json={"originalName": "a.txt"},
        headers=headers_for(user),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "client_input"
    assert "contentType" in body["detail"]


def test_complete_without_parts_is_client_input(client, user, headers_for):
    headers = headers_for(user)
    started = _init(client, headers).json()

    response = client.post(
        "/api/files/complete-multipart",
        json={
            "originalName": "report.pdf",
            "uploadId": started["uploadId"],
            "key": started["key"],
            "contentType": "application/pdf",
            "size": 0,
            "parts": [],
        },
        headers=headers,
    )

    assert response.status_code == 400
    assert response.json()["kind"] == "client_input"


def test_part_for_unknown_upload_is_not_found(client, user, headers_for):
    started = {"uploadId": "nope", "key": f"uploads/{user.id}/x.bin"}
    response = _upload(client, headers_for(user), started, 1, b"data")

    assert response.status_code == 404
    assert response.json()["kind"] == "session"


def test_other_users_session_is_forbidden(client, user, other_user, headers_for):
    started = _init(client, headers_for(user)).json()

    response = _upload(client, headers_for(other_user), started, 1, b"data")

    assert response.status_code == 403


def test_abort_then_complete_conflicts(client, store, user, headers_for):
    headers = headers_for(user)
    started = _init(client, headers).json()
    _upload(client, headers, started, 1, b"data")

    response = client.post(
        "/api/files/abort-multipart",
        json={"uploadId": started["uploadId"], "key": started["key"]},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert store.count("abort") == 1

    response = client.post(
        "/api/files/complete-multipart",
        json={
            "originalName": "report.pdf",
            "uploadId": started["uploadId"],
            "key": started["key"],
            "contentType": "application/pdf",
            "size": 4,
            "parts": [{"partNumber": 1, "etag": "x"}],
        },
        headers=headers,
    )
    assert response.status_code == 409
    assert store.count("complete") == 0


def test_store_outage_is_transient(client, store, user, headers_for):
    from app.core.errors import StoreUnavailable

    headers = headers_for(user)
    started = _init(client, headers).json()
    store.upload_part_errors.append(StoreUnavailable("store down"))

    response = _upload(client, headers, started, 1, b"data")

    assert response.status_code == 503
    assert response.json()["kind"] == "transient"

    # The same part number can be retried
    assert _upload(client, headers, started, 1, b"data").status_code == 200

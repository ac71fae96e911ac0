"""Firebase, export-file and Supabase stores against stubbed HTTP sessions."""

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests
from google.auth import exceptions as google_auth_exceptions

from storesync.errors import (
    ConfigurationError,
    ConnectivityError,
    ConstraintViolation,
    SchemaError,
    StoreError,
)
from storesync.extractors.export_extractor import ExportFileSource
from storesync.extractors.firebase_extractor import FirebaseSource, service_account_credential
from storesync.loaders.supabase_loader import SupabaseTarget, classify_error


def response(status=200, payload=None, content=b""):
    resp = MagicMock()
    resp.status_code = status
    resp.content = content
    resp.text = json.dumps(payload) if payload is not None else ""
    resp.reason = "reason"
    if payload is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = payload
    return resp


def session_returning(*responses):
    session = MagicMock(spec=requests.Session)
    session.request.side_effect = list(responses)
    return session


# Supabase error classification

@pytest.mark.parametrize("code", ["PGRST204", "PGRST205", "42703", "42P01"])
def test_schema_codes(code):
    assert isinstance(classify_error(400, {"code": code, "message": "x"}, "ctx"), SchemaError)


def test_schema_error_names_missing_column():
    error = classify_error(
        400,
        {"code": "PGRST204", "message": "Could not find the 'flagged_at' column of 'conversations' in the schema cache"},
        "Upsert",
    )
    assert error.column == "flagged_at"


def test_schema_error_names_missing_table():
    error = classify_error(404, {"code": "42P01", "message": 'relation "public.new_cars" does not exist'}, "Upsert")
    assert error.table == "public.new_cars"


@pytest.mark.parametrize("code", ["23505", "23502", "23503"])
def test_constraint_codes(code):
    assert isinstance(classify_error(409, {"code": code, "message": "dup"}, "ctx"), ConstraintViolation)


@pytest.mark.parametrize("status", [429, 500, 503])
def test_retryable_statuses(status):
    assert isinstance(classify_error(status, {"message": "busy"}, "ctx"), ConnectivityError)


def test_other_errors_are_generic():
    error = classify_error(401, {"message": "Invalid API key"}, "Upsert")
    assert type(error) is StoreError
    assert "Invalid API key" in str(error)


def test_message_is_not_used_for_dispatch():
    error = classify_error(400, {"code": "22P02", "message": "column \"x\" does not exist"}, "ctx")
    assert type(error) is StoreError


# Supabase target

def test_upsert_request_shape():
    session = session_returning(response(201))
    target = SupabaseTarget("https://proj.supabase.co/", "key", session=session)

    target.upsert("users", [{"email": "a@b.c"}], "email")

    method, url = session.request.call_args.args
    kwargs = session.request.call_args.kwargs
    assert (method, url) == ("POST", "https://proj.supabase.co/rest/v1/users")
    assert kwargs["params"] == {"on_conflict": "email"}
    assert kwargs["json"] == [{"email": "a@b.c"}]
    assert "resolution=merge-duplicates" in kwargs["headers"]["Prefer"]


def test_upsert_raises_typed_error():
    session = session_returning(response(400, {"code": "PGRST204", "message": "Could not find the 'bio' column"}))
    target = SupabaseTarget("https://proj.supabase.co", "key", session=session)

    with pytest.raises(SchemaError):
        target.upsert("users", [{"bio": "x"}], "email")


def test_transport_failure_is_connectivity_error():
    session = MagicMock(spec=requests.Session)
    session.request.side_effect = requests.exceptions.ConnectionError("refused")
    target = SupabaseTarget("https://proj.supabase.co", "key", session=session)

    with pytest.raises(ConnectivityError):
        target.upsert("users", [{}], "email")


def test_upload_overwrites_and_public_url():
    session = session_returning(response(200, {"Key": "files/a b.png"}))
    target = SupabaseTarget("https://proj.supabase.co", "key", bucket="files", session=session)

    target.upload("users/a b.png", b"data", "image/png")

    method, url = session.request.call_args.args
    headers = session.request.call_args.kwargs["headers"]
    assert url == "https://proj.supabase.co/storage/v1/object/files/users/a%20b.png"
    assert headers["x-upsert"] == "true"
    assert headers["Content-Type"] == "image/png"
    assert target.public_url("users/a b.png") == (
        "https://proj.supabase.co/storage/v1/object/public/files/users/a%20b.png"
    )


def test_supabase_connection_check():
    assert SupabaseTarget("https://p.supabase.co", "k", session=session_returning(response(200, {}))).validate_connection()
    assert not SupabaseTarget("https://p.supabase.co", "k", session=session_returning(response(401, {}))).validate_connection()


# Firebase source

def test_read_collection_passes_auth():
    session = session_returning(response(200, {"u1": {"email": "a@b.c"}}))
    source = FirebaseSource("https://demo.firebaseio.com/", auth_token="secret", session=session)

    data = source.read_collection("users")

    assert data == {"u1": {"email": "a@b.c"}}
    method, url = session.request.call_args.args
    assert url == "https://demo.firebaseio.com/users.json"
    assert session.request.call_args.kwargs["params"] == {"auth": "secret"}


def token_credential(*expiries):
    credential = MagicMock()
    credential.get_access_token.side_effect = [
        SimpleNamespace(access_token=f"oauth-{i}", expiry=expiry) for i, expiry in enumerate(expiries)
    ]
    return credential


def test_service_account_token_is_reused_until_expiry():
    later = datetime.now(timezone.utc) + timedelta(hours=1)
    credential = token_credential(later)
    session = session_returning(response(200, {}), response(200, {}))
    source = FirebaseSource(
        "https://demo.firebaseio.com", auth_token="ignored", session=session, credential=credential
    )

    source.read_collection("users")
    source.read_collection("vehicles")

    assert credential.get_access_token.call_count == 1
    for call in session.request.call_args_list:
        assert call.kwargs["params"] == {"access_token": "oauth-0"}


def test_expiring_token_is_refreshed():
    # google-auth reports expiry as naive UTC
    soon = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(minutes=1)
    credential = token_credential(soon, None)
    session = session_returning(response(200, {}), response(200, {"items": []}))
    source = FirebaseSource(
        "https://demo.firebaseio.com", storage_bucket="demo.appspot.com",
        session=session, credential=credential,
    )

    source.read_collection("users")
    source.list_blobs("images")

    assert credential.get_access_token.call_count == 2
    headers = session.request.call_args_list[1].kwargs["headers"]
    assert headers == {"Authorization": "Bearer oauth-1"}


def test_token_failure_fails_connection_check():
    credential = MagicMock()
    credential.get_access_token.side_effect = google_auth_exceptions.RefreshError("invalid_grant")
    source = FirebaseSource(
        "https://demo.firebaseio.com", session=MagicMock(spec=requests.Session), credential=credential
    )

    assert source.validate_connection() is False
    with pytest.raises(StoreError):
        source.read_collection("users")


def test_invalid_service_account_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        service_account_credential({"client_email": "x@y.z", "private_key": "k"})


def test_read_collection_error_is_typed():
    session = session_returning(response(503, {"error": "unavailable"}))
    source = FirebaseSource("https://demo.firebaseio.com", session=session)

    with pytest.raises(ConnectivityError):
        source.read_collection("users")


def test_list_blobs_follows_pages():
    session = session_returning(
        response(200, {"items": [{"name": "images/a.png"}], "nextPageToken": "t2"}),
        response(200, {"items": [{"name": "images/b.png"}]}),
    )
    source = FirebaseSource("https://demo.firebaseio.com", storage_bucket="demo.appspot.com", session=session)

    assert source.list_blobs("images") == ["images/a.png", "images/b.png"]
    second_params = session.request.call_args_list[1].kwargs["params"]
    assert second_params == {"prefix": "images/", "pageToken": "t2"}


def test_download_url_uses_token():
    session = session_returning(response(200, {"name": "users/a.png", "downloadTokens": "tok1,tok2"}))
    source = FirebaseSource("https://demo.firebaseio.com", storage_bucket="demo.appspot.com", session=session)

    url = source.get_download_url("users/a.png")

    assert url == (
        "https://firebasestorage.googleapis.com/v0/b/demo.appspot.com/o/users%2Fa.png"
        "?alt=media&token=tok1"
    )


def test_blobs_need_a_bucket():
    source = FirebaseSource("https://demo.firebaseio.com", session=MagicMock(spec=requests.Session))
    assert not source.supports_blobs
    with pytest.raises(StoreError):
        source.list_blobs("images")


# Export file source

def test_export_source(tmp_path):
    export = tmp_path / "export.json"
    export.write_text(json.dumps({"users": {"u1": {"email": "a@b.c"}}, "plans": [{"name": "Free"}]}))
    blobs = tmp_path / "blobs"
    (blobs / "images" / "nested").mkdir(parents=True)
    (blobs / "images" / "nested" / "a b.png").write_bytes(b"png")

    source = ExportFileSource(export, blob_dir=blobs)

    assert source.validate_connection()
    assert source.read_collection("users") == {"u1": {"email": "a@b.c"}}
    assert source.read_collection("missing") is None
    assert [r.key for r in source.to_records("plans", source.read_collection("plans"))] == ["0"]
    assert source.list_blobs("images") == ["images/nested/a b.png"]
    assert source.list_blobs("vehicles") == []
    assert source.download(source.get_download_url("images/nested/a b.png")) == b"png"


def test_export_source_missing_file(tmp_path):
    source = ExportFileSource(tmp_path / "nope.json")
    assert not source.validate_connection()
    with pytest.raises(ConfigurationError):
        source.read_collection("users")


def test_to_records_skips_non_objects(tmp_path):
    source = ExportFileSource(tmp_path / "unused.json")
    records = source.to_records("users", {"u1": {"email": "a@b.c"}, "count": 3, "gone": None})
    assert [r.key for r in records] == ["u1"]

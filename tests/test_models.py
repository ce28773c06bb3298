"""Tests for Pydantic models."""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from kubeconn.models.credentials import CachedCredential, Credential, ExecCredential
from kubeconn.models.resources import ListMeta, ResourceList, Status, resource_version_of
from kubeconn.models.watch import EventType, WatchEvent


# ── Credential ───────────────────────────────────────────────────────

@pytest.mark.parametrize("kwargs,mode", [
    ({"token": "t", "client_cert_file": "/c", "username": "u"}, "token"),
    ({"client_cert_file": "/c", "username": "u"}, "client-certificate"),
    ({"username": "u", "password": "p"}, "basic"),
    ({}, "none"),
])
def test_auth_mode(kwargs, mode):
    assert Credential(**kwargs).auth_mode == mode


def test_bearer_header():
    assert Credential(token="abc").authorization_header() == "Bearer abc"


def test_basic_header_without_password():
    assert Credential(username="admin").authorization_header() == "Basic YWRtaW46"


def test_certificate_has_no_header():
    assert Credential(client_cert_file="/c").authorization_header() is None


def test_cleanup_temp_files(tmp_path):
    a = tmp_path / "a.pem"
    a.write_text("x")
    cred = Credential()
    cred.track_temp_file(str(a))
    cred.track_temp_file(str(tmp_path / "already-gone.pem"))

    cred.cleanup_temp_files()

    assert not a.exists()
    assert cred.temp_files == []


def test_temp_files_not_serialized():
    cred = Credential(token="t")
    cred.track_temp_file("/tmp/x.pem")
    assert "_temp_files" not in cred.model_dump()


# ── CachedCredential ─────────────────────────────────────────────────

def test_cached_without_expiry_never_expires():
    cached = CachedCredential(credential=Credential(token="t"))
    assert cached.is_expired(now=datetime(2100, 1, 1, tzinfo=timezone.utc)) is False


def test_cached_expiry():
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    cached = CachedCredential(credential=Credential(token="t"), expires_at=now + timedelta(minutes=5))
    assert cached.is_expired(now=now) is False
    assert cached.is_expired(now=now + timedelta(minutes=5)) is True


def test_cached_naive_expiry_treated_as_utc():
    cached = CachedCredential(credential=Credential(token="t"), expires_at=datetime(2026, 1, 1, 12, 0))
    assert cached.is_expired(now=datetime(2026, 1, 1, 11, 0, tzinfo=timezone.utc)) is False
    assert cached.is_expired(now=datetime(2026, 1, 1, 13, 0, tzinfo=timezone.utc)) is True


def test_cached_alias_round_trip():
    data = {"credential": {"token": "t"}, "expiresAt": "2026-01-01T00:00:00Z"}
    cached = CachedCredential.model_validate(data)
    assert cached.expires_at.tzinfo is not None
    assert "expiresAt" in cached.model_dump(by_alias=True)


# ── ExecCredential ───────────────────────────────────────────────────

def test_exec_credential_parses_status():
    cred = ExecCredential.model_validate({
        "apiVersion": "client.authentication.k8s.io/v1beta1",
        "kind": "ExecCredential",
        "status": {
            "token": "t",
            "clientCertificateData": "Y2VydA==",
            "expirationTimestamp": "2026-01-01T00:00:00Z",
        },
    })
    assert cred.api_version == "client.authentication.k8s.io/v1beta1"
    assert cred.status.token == "t"
    assert cred.status.client_certificate_data == "Y2VydA=="
    assert cred.status.expiration_timestamp.year == 2026


def test_exec_credential_requires_status():
    with pytest.raises(ValidationError):
        ExecCredential.model_validate({"kind": "ExecCredential"})


# ── Resources ────────────────────────────────────────────────────────

def test_list_meta_continue_alias():
    meta = ListMeta.model_validate({"resourceVersion": "9", "continue": "next"})
    assert meta.continue_token == "next"


def test_resource_list_defaults():
    rl = ResourceList.model_validate({"kind": "PodList"})
    assert rl.items == []
    assert rl.metadata.continue_token is None


def test_status_looks_like():
    assert Status.looks_like({"kind": "Status", "code": 410})
    assert not Status.looks_like({"kind": "Pod"})
    assert not Status.looks_like("Status")


@pytest.mark.parametrize("obj,expected", [
    ({"metadata": {"resourceVersion": "12"}}, "12"),
    ({"metadata": {"resourceVersion": 12}}, "12"),
    ({"metadata": {}}, None),
    ({"metadata": None}, None),
    ({}, None),
    ("not a dict", None),
])
def test_resource_version_of(obj, expected):
    assert resource_version_of(obj) == expected


# ── WatchEvent ───────────────────────────────────────────────────────

def test_watch_event_parses():
    event = WatchEvent.model_validate({"type": "ADDED", "object": {"kind": "Pod"}})
    assert event.type == EventType.ADDED
    assert event.added
    assert not event.deleted


def test_watch_event_unknown_type():
    with pytest.raises(ValidationError):
        WatchEvent.model_validate({"type": "EXPLODED", "object": {}})

"""Tests for the notification orchestrator."""

import json
import logging

import httpx as httpx_lib
import pytest
from conftest import make_settings

from dtnotify import transport
from dtnotify.config import JobConfig
from dtnotify.credentials import CredentialStore
from dtnotify.keys import build_key
from dtnotify.macros import EnvironmentMacroExpander, MacroEvaluationError
from dtnotify.models import BuildResult, BuildSnapshot, NotificationState
from dtnotify.notifier import Notifier, notify

EVENTS_URL = "https://dt.example.com/api/v1/events"


class FailingExpander:
    def expand(self, build, workspace, template):
        raise MacroEvaluationError("boom")


def _body(request):
    return json.loads(request.content)


# --- End-to-end ---

def test_success_sends_deployment(httpx_mock, build):
    """SUCCESS → deployment event whose version is the build key; hook succeeds."""
    httpx_mock.add_response(status_code=200)
    settings = make_settings(include_build_number_in_key=True)
    notifier = Notifier(settings)

    assert notifier.after_build(build) is True

    req = httpx_mock.get_request()
    assert req.method == "POST"
    assert str(req.url) == EVENTS_URL
    assert req.headers["content-type"] == "application/json"
    body = _body(req)
    assert body["eventType"] == "CUSTOM_DEPLOYMENT"
    assert body["attachRules"]["entityIds"] == ["E1"]
    expected_key = build_key(build, settings.resolve(), "http://ci.example.com", EnvironmentMacroExpander())
    assert body["deploymentVersion"] == expected_key
    assert build.result == BuildResult.SUCCESS


def test_200_is_success(httpx_mock, build):
    httpx_mock.add_response(status_code=200)
    notifier = Notifier(make_settings())
    result = notifier.notify(build, None, notifier.settings.resolve(),
                             NotificationState.SUCCESSFUL, "http://ci.example.com")
    assert result.success is True


def test_500_is_failure_with_body(httpx_mock, build, caplog):
    """Non-200 → failure carrying the response body; the hook still returns True."""
    httpx_mock.add_response(status_code=500, text="server error")
    notifier = Notifier(make_settings())
    result = notifier.notify(build, None, notifier.settings.resolve(),
                             NotificationState.SUCCESSFUL, "http://ci.example.com")
    assert result.success is False
    assert result.message == "server error"

    httpx_mock.add_response(status_code=500, text="server error")
    assert notifier.after_build(build) is True
    assert "Failed to notify server (server error)" in caplog.text
    assert build.result == BuildResult.SUCCESS


def test_identical_calls_send_identical_bodies(httpx_mock, build):
    httpx_mock.add_response(status_code=200)
    httpx_mock.add_response(status_code=200)
    notifier = Notifier(make_settings())
    notifier.after_build(build)
    notifier.after_build(build)
    first, second = httpx_mock.get_requests()
    assert first.content == second.content


def test_module_level_notify(httpx_mock, build):
    httpx_mock.add_response(status_code=200)
    assert notify(build, None, make_settings()) is True
    assert _body(httpx_mock.get_request())["eventType"] == "CUSTOM_DEPLOYMENT"


# --- Lifecycle hooks ---

def test_before_build_sends_in_progress(httpx_mock):
    httpx_mock.add_response(status_code=200)
    running = BuildSnapshot(job_name="app", number=1, root_url="http://ci.example.com")
    assert Notifier(make_settings()).before_build(running) is True
    body = _body(httpx_mock.get_request())
    assert body["eventType"] == "CUSTOM_ANNOTATION"
    assert body["annotationType"] == "INPROGRESS Jenkins Job"
    assert body["customProperties"]["description"] == "building on http://ci.example.com"


def test_before_build_suppressed(httpx_mock):
    running = BuildSnapshot(job_name="app", number=1, root_url="http://ci.example.com")
    settings = make_settings(job=JobConfig(disable_inprogress_notification=True))
    assert Notifier(settings).before_build(running) is True
    assert httpx_mock.get_requests() == []


def test_failure_sends_annotation(httpx_mock):
    httpx_mock.add_response(status_code=200)
    failed = BuildSnapshot(job_name="app", number=3, display_name="app #3",
                           result=BuildResult.FAILURE, root_url="http://ci.example.com")
    Notifier(make_settings()).after_build(failed)
    body = _body(httpx_mock.get_request())
    assert body["annotationType"] == "FAILED Jenkins Job"
    assert body["annotationDescription"].startswith("FAILED - app #3 ")


def test_not_built_is_skipped(httpx_mock):
    b = BuildSnapshot(job_name="app", number=3, result=BuildResult.NOT_BUILT,
                      root_url="http://ci.example.com")
    assert Notifier(make_settings()).after_build(b) is True
    assert httpx_mock.get_requests() == []


def test_aborted_skipped_by_freestyle_hook_only(httpx_mock):
    """In-progress suppressed: post-build hook skips ABORTED, the pipeline step reports FAILED."""
    httpx_mock.add_response(status_code=200)
    aborted = BuildSnapshot(job_name="app", number=3, result=BuildResult.ABORTED,
                            root_url="http://ci.example.com")
    notifier = Notifier(make_settings(disable_inprogress_notification=True))

    assert notifier.after_build(aborted) is True
    assert httpx_mock.get_requests() == []

    assert notifier.perform(aborted) is True
    assert _body(httpx_mock.get_request())["annotationType"] == "FAILED Jenkins Job"


def test_missing_root_url_skips(httpx_mock, caplog):
    b = BuildSnapshot(job_name="app", number=1, result=BuildResult.SUCCESS)
    assert Notifier(make_settings(root_url="")).after_build(b) is True
    assert httpx_mock.get_requests() == []
    assert "root URL not configured" in caplog.text


def test_global_root_url_used(httpx_mock):
    httpx_mock.add_response(status_code=200)
    b = BuildSnapshot(job_name="app", number=1, result=BuildResult.SUCCESS)
    Notifier(make_settings(root_url="http://global-ci")).after_build(b)
    assert _body(httpx_mock.get_request())["ciBackLink"] == "http://global-ci/job/app/1/"


# --- Request construction ---

def test_token_from_credentials_store(httpx_mock, build):
    httpx_mock.add_response(status_code=200)
    store = CredentialStore({"dt-token": {"secret": "dt0c01.abc"}})
    Notifier(make_settings(credentials_id="dt-token"), credentials=store).after_build(build)
    assert httpx_mock.get_request().headers["authorization"] == "Api-Token dt0c01.abc"


def test_credentials_id_used_as_token_when_unknown(httpx_mock, build):
    httpx_mock.add_response(status_code=200)
    Notifier(make_settings(credentials_id="dt0c01.raw")).after_build(build)
    assert httpx_mock.get_request().headers["authorization"] == "Api-Token dt0c01.raw"


def test_no_credentials_no_authorization(httpx_mock, build):
    httpx_mock.add_response(status_code=200)
    Notifier(make_settings()).after_build(build)
    assert "authorization" not in httpx_mock.get_request().headers


def test_server_url_trailing_slash_stripped(httpx_mock, build):
    httpx_mock.add_response(status_code=200)
    Notifier(make_settings(server_url="https://dt.example.com/")).after_build(build)
    assert str(httpx_mock.get_request().url) == EVENTS_URL


def test_server_url_template_expanded(httpx_mock):
    httpx_mock.add_response(status_code=200)
    b = BuildSnapshot(job_name="app", number=1, result=BuildResult.SUCCESS,
                      root_url="http://ci.example.com", env={"DT_HOST": "dt.example.com"})
    Notifier(make_settings(server_url="https://${DT_HOST}")).after_build(b)
    assert str(httpx_mock.get_request().url) == EVENTS_URL


def test_server_url_expansion_failure_uses_raw_value(httpx_mock, build, caplog):
    httpx_mock.add_response(status_code=200)
    Notifier(make_settings(), expander=FailingExpander()).after_build(build)
    assert str(httpx_mock.get_request().url) == EVENTS_URL
    assert "Unable to expand server URL" in caplog.text


# --- Error handling ---

def test_tls_verification_error_logs_hint(httpx_mock, build, caplog):
    httpx_mock.add_exception(
        httpx_lib.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed")
    )
    assert Notifier(make_settings()).after_build(build) is True
    assert "ignore_unverified_ssl" in caplog.text


def test_network_error_logged_with_traceback(httpx_mock, build, caplog):
    httpx_mock.add_exception(httpx_lib.ConnectError("unreachable"))
    assert Notifier(make_settings()).after_build(build) is True
    records = [r for r in caplog.records if "Caught exception" in r.getMessage()]
    assert records and records[0].exc_info is not None


@pytest.fixture
def created_clients(monkeypatch):
    """Record create_client() calls and the clients they return."""
    calls = []

    def recording_create_client(url, **kwargs):
        client = transport.create_client(url, **kwargs)
        calls.append((url, kwargs, client))
        return client

    monkeypatch.setattr("dtnotify.notifier.create_client", recording_create_client)
    return calls


def test_client_certificate_passed_to_transport(httpx_mock, build, client_cert, created_clients):
    """The certificate stored under the credentials id reaches the TLS setup."""
    httpx_mock.add_response(status_code=200)
    store = CredentialStore({"dt-token": {
        "secret": "dt0c01.abc",
        "certificate": client_cert.cert_file,
        "key": client_cert.key_file,
    }})
    settings = make_settings(credentials_id="dt-token", ignore_unverified_ssl=True)
    assert Notifier(settings, credentials=store).after_build(build) is True

    [(url, kwargs, _)] = created_clients
    assert url == "https://dt.example.com"
    assert kwargs["certificate"] == client_cert
    assert kwargs["ignore_unverified_ssl"] is True
    assert httpx_mock.get_request().headers["authorization"] == "Api-Token dt0c01.abc"


def test_client_closed_when_send_raises(httpx_mock, build, created_clients):
    httpx_mock.add_exception(httpx_lib.ConnectError("unreachable"))
    Notifier(make_settings()).after_build(build)
    [(_, _, client)] = created_clients
    assert client.is_closed


def test_missing_server_url_reported(httpx_mock, build, caplog):
    assert Notifier(make_settings(server_url="")).after_build(build) is True
    assert httpx_mock.get_requests() == []
    assert "no server URL configured" in caplog.text


@pytest.mark.parametrize("hook", ["before_build", "after_build", "perform"])
def test_hooks_never_fail(httpx_mock, build, hook):
    httpx_mock.add_exception(httpx_lib.ReadTimeout("slow"))
    assert getattr(Notifier(make_settings()), hook)(build) is True

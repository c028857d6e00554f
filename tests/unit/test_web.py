import pytest

fastapi = pytest.importorskip("fastapi", reason="FastAPI is required for web integration tests.")
from fastapi import Depends, FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from calq import CalqClient, CookieWriteError, DeliveryError, StateError  # noqa: E402
from calq.queue import Endpoint  # noqa: E402
from calq.state import SessionState, decode_cookie, encode_cookie  # noqa: E402
from calq.web import CalqMiddleware, calq_session  # noqa: E402

from conftest import WRITE_KEY, RecordingQueue  # noqa: E402


def build_app(queue):
    app = FastAPI()
    app.add_middleware(CalqMiddleware)
    session = calq_session(WRITE_KEY, api_processor=queue)

    @app.get("/visit")
    def visit(calq: CalqClient = Depends(session)):
        calq.track("Visit")
        return {"actor": calq.actor}

    @app.post("/signup")
    def signup(user_id: str, calq: CalqClient = Depends(session)):
        calq.identify(user_id)
        return {"actor": calq.actor}

    @app.post("/campaign")
    def campaign(calq: CalqClient = Depends(session)):
        return calq.global_properties

    @app.get("/twice")
    def twice(first: CalqClient = Depends(session), second: CalqClient = Depends(calq_session(WRITE_KEY))):
        return {"same": first is second}

    @app.get("/crash")
    def crash(calq: CalqClient = Depends(session)):
        calq.track("Checkout Started")
        raise RuntimeError("payment backend down")

    app.state.late_sessions = []

    @app.get("/late")
    def late(calq: CalqClient = Depends(session)):
        app.state.late_sessions.append(calq)
        return {}

    return app


@pytest.fixture
def app(queue):
    return build_app(queue)


@pytest.fixture
def http(app):
    return TestClient(app)


def test_new_visitor_gets_cookie_and_calls_are_flushed(http, queue):
    response = http.get("/visit", headers={"user-agent": "TestAgent/1.0"})
    assert response.status_code == 200
    stored = decode_cookie(response.cookies.get("_calq_d"))
    assert stored.actor == response.json()["actor"]
    assert stored.has_tracked is True
    assert stored.global_properties["$device_agent"] == "TestAgent/1.0"
    assert queue.flushes == 1
    assert [c.endpoint for c in queue.sent] == [Endpoint.TRACK]


def test_returning_visitor_keeps_identity(http, queue):
    first = http.get("/visit")
    actor = first.json()["actor"]
    second = http.get("/visit")
    assert second.json()["actor"] == actor


def test_identify_after_anonymous_tracking_transfers(http, queue):
    anon = http.get("/visit").json()["actor"]
    response = http.post("/signup", params={"user_id": "user-42"})
    assert response.json()["actor"] == "user-42"
    transfer = [c for c in queue.sent if c.endpoint == Endpoint.TRANSFER]
    assert len(transfer) == 1
    assert transfer[0].payload["old_actor"] == anon
    stored = decode_cookie(response.cookies.get("_calq_d"))
    assert stored.actor == "user-42"
    assert stored.is_anonymous is False


def test_cookie_from_browser_client_is_respected(http):
    cookie = encode_cookie(SessionState(actor="js-actor", prior_cookie_fields={"jsOnly": 1}))
    response = http.get("/visit", headers={"cookie": f"_calq_d={cookie}"})
    assert response.json()["actor"] == "js-actor"
    assert decode_cookie(response.cookies.get("_calq_d")).prior_cookie_fields["jsOnly"] == 1


def test_form_utm_params_beat_query_params(http):
    response = http.post(
        "/campaign",
        params={"utm_campaign": "from-query", "utm_medium": "email"},
        data={"utm_campaign": "from-form"},
    )
    props = response.json()
    assert props["$utm_campaign"] == "from-form"
    assert props["$utm_medium"] == "email"


def test_source_ip_uses_forwarded_header(http, queue):
    http.get("/visit", headers={"x-forwarded-for": "10.1.1.1, 192.0.2.10"})
    assert queue.sent[0].payload["ip_address"] == "192.0.2.10"


def test_session_is_shared_within_a_request(http):
    assert http.get("/twice").json() == {"same": True}


def test_writing_state_after_response_fails(app, http):
    http.get("/late")
    (calq,) = app.state.late_sessions
    with pytest.raises(CookieWriteError):
        calq.set_global_property("late", True)


class UnreachableQueue(RecordingQueue):
    def flush(self):
        self.flushes += 1
        raise DeliveryError("api.calq.io", "track", 5)


def test_calls_tracked_before_a_handler_error_are_still_sent(http, queue):
    with pytest.raises(RuntimeError, match="payment backend down"):
        http.get("/crash")
    assert queue.flushes == 1
    assert [c.endpoint for c in queue.sent] == [Endpoint.TRACK]
    assert queue.sent[0].payload["action_name"] == "Checkout Started"


def test_failed_flush_does_not_hide_the_handler_error():
    queue = UnreachableQueue()
    http = TestClient(build_app(queue))
    with pytest.raises(RuntimeError, match="payment backend down"):
        http.get("/crash")
    assert queue.flushes == 1


def test_failed_flush_after_a_normal_response_is_raised():
    http = TestClient(build_app(UnreachableQueue()))
    with pytest.raises(DeliveryError):
        http.get("/visit")


def test_session_without_middleware_is_refused(queue):
    app = FastAPI()

    @app.get("/visit")
    def visit(calq: CalqClient = Depends(calq_session(WRITE_KEY, api_processor=queue))):
        calq.track("Visit")
        return {}

    with pytest.raises(StateError, match="CalqMiddleware"):
        TestClient(app).get("/visit")
    assert queue.calls == []

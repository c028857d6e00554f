import structlog

from calq.config import Settings
from calq.logging_config import configure_logging, get_logger
from calq.queue import DeliveryQueue


def test_settings_defaults():
    s = Settings()
    assert s.api_host == "api.calq.io"
    assert s.max_queue_size == 100
    assert s.max_retries == 5
    assert s.cookie_name == "_calq_d"
    assert s.cookie_domain is None
    assert s.cookie_expires_days == 180


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("CALQ_MAX_RETRIES", "2")
    monkeypatch.setenv("CALQ_COOKIE_DOMAIN", ".example.com")
    s = Settings()
    assert s.max_retries == 2
    assert s.cookie_domain == ".example.com"


def test_queue_takes_timeouts_from_arguments():
    queue = DeliveryQueue(connect_timeout=1.0, timeout=3.0)
    assert queue.timeout.connect == 1.0
    assert queue.timeout.read == 3.0


def test_configure_logging_emits_json(capsys):
    try:
        configure_logging("debug")
        get_logger().info("hello", answer=42)
        out = capsys.readouterr().out
        assert '"event": "hello"' in out
        assert '"answer": 42' in out
    finally:
        structlog.reset_defaults()

import server


class _RunRecorder:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def __call__(self, app, **kwargs) -> None:
        self.calls.append({"app": app, **kwargs})


def test_main_uses_local_defaults(monkeypatch) -> None:
    recorder = _RunRecorder()
    app = object()
    monkeypatch.setattr(server, "create_app", lambda: app)
    monkeypatch.setattr(server.uvicorn, "run", recorder)
    monkeypatch.delenv("SENDSECURE_HOST", raising=False)
    monkeypatch.delenv("SENDSECURE_PORT", raising=False)

    server.main()

    assert recorder.calls == [{"app": app, "host": "127.0.0.1", "port": 8000}]


def test_main_reads_host_and_port_from_env(monkeypatch) -> None:
    recorder = _RunRecorder()
    app = object()
    monkeypatch.setattr(server, "create_app", lambda: app)
    monkeypatch.setattr(server.uvicorn, "run", recorder)
    monkeypatch.setenv("SENDSECURE_HOST", "0.0.0.0")
    monkeypatch.setenv("SENDSECURE_PORT", "9100")

    server.main()

    assert recorder.calls == [{"app": app, "host": "0.0.0.0", "port": 9100}]


def test_create_context_reads_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(server, "load_env", lambda: None)
    monkeypatch.setattr(server, "setup_logging", lambda: False)
    monkeypatch.setenv("SENDSECURE_CLIENT_ID", "client-xyz")
    monkeypatch.setenv("SENDSECURE_SESSION_PATH", str(tmp_path / "session.json"))
    monkeypatch.delenv("SENDSECURE_AUTH_SERVER", raising=False)
    monkeypatch.delenv("SENDSECURE_REDIRECT_URI", raising=False)

    context = server.create_context()

    assert context.config.client_id == "client-xyz"
    assert context.config.auth_server == "https://auth.huny.dev"
    assert context.window.origin == "http://127.0.0.1:8000"

import server


EXPECTED_EXPORTS = (
    "extract_bearer_token",
    "create_context",
    "create_app",
    "load_env",
    "setup_logging",
    "main",
)


def test_import_server() -> None:
    for name in EXPECTED_EXPORTS:
        assert hasattr(server, name)

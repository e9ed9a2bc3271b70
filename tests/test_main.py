import pytest

from main import build_parser, parse_tokens


class TestBuildParser:
    """Test cases for command line and environment configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("BLOBD_PORT", raising=False)
        monkeypatch.delenv("BLOBD_LOG_LEVEL", raising=False)
        args = build_parser().parse_args([])
        assert args.port == 8000
        assert args.log_level == "INFO"

    def test_max_upload_size_from_env(self, monkeypatch):
        monkeypatch.setenv("BLOBD_MAX_UPLOAD_SIZE", "10")
        args = build_parser().parse_args([])
        assert args.max_upload_size == 10

    def test_invalid_max_upload_size_from_env(self, monkeypatch, capsys):
        monkeypatch.setenv("BLOBD_MAX_UPLOAD_SIZE", "abc")
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args([])
        assert exc_info.value.code == 2
        assert "--max-upload-size" in capsys.readouterr().err

    def test_invalid_port_from_env(self, monkeypatch):
        monkeypatch.setenv("BLOBD_PORT", "http")
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_log_level_is_normalized(self):
        assert build_parser().parse_args(["--log-level", "debug"]).log_level == "DEBUG"
        assert build_parser().parse_args(["--log-level", "warn"]).log_level == "WARNING"

    def test_invalid_log_level(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--log-level", "bogus"])
        assert exc_info.value.code == 2
        assert "invalid log level" in capsys.readouterr().err

    def test_invalid_log_level_from_env(self, monkeypatch):
        monkeypatch.setenv("BLOBD_LOG_LEVEL", "loud")
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


def test_parse_tokens():
    assert parse_tokens("t1:alice, t2:bob") == {"t1": "alice", "t2": "bob"}

"""Tests for the local-chrome command line entry point"""

from unittest.mock import MagicMock, patch

import pytest

import main
from config import config


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """main mutates the global config; give each test a clean one"""
    monkeypatch.setattr(config, "_custom_settings", {})
    for key in ["CHROMEDRIVER", "CHROME_BINARY", "WD_SERVER_PORT", "DEVTOOLS_PORT"]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def no_signal_handlers():
    with patch("main.signal.signal") as mock_signal:
        yield mock_signal


class TestParser:
    def test_defaults(self):
        args = main.build_parser().parse_args([])

        assert args.chromedriver is None
        assert args.chrome is None
        assert args.direct is False
        assert args.server_port is None

    def test_all_options(self):
        args = main.build_parser().parse_args([
            "--chromedriver", "/usr/bin/chromedriver",
            "--chrome", "/usr/bin/google-chrome",
            "--direct",
            "--server-port", "9515",
            "--devtools-port", "9222",
            "--log-level", "DEBUG",
        ])

        assert args.chromedriver == "/usr/bin/chromedriver"
        assert args.chrome == "/usr/bin/google-chrome"
        assert args.direct is True
        assert args.server_port == 9515
        assert args.devtools_port == 9222
        assert args.log_level == "DEBUG"

    def test_rejects_bad_port(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args(["--server-port", "abc"])


class TestApplication:
    def test_cli_options_reach_controller(self):
        args = main.build_parser().parse_args(
            ["--chromedriver", "/opt/cd", "--chrome", "/opt/chrome", "--server-port", "9515"]
        )

        app = main.Application(args)

        assert app.browser.chromedriver == "/opt/cd"
        assert app.browser.chrome == "/opt/chrome"
        assert app.browser.server_port == 9515
        assert app.browser.devtools_port == 1234

    def test_run_stops_when_process_exits(self, no_signal_handlers):
        app = main.Application(main.build_parser().parse_args(["--chromedriver", "/opt/cd"]))
        app.start = MagicMock(return_value="http://localhost:4444")
        app.browser = MagicMock()
        app.browser.is_running.return_value = False

        assert app.run() == 1

    def test_run_returns_zero_on_stop_request(self, no_signal_handlers):
        app = main.Application(main.build_parser().parse_args(["--chromedriver", "/opt/cd"]))
        app.start = MagicMock(return_value="http://localhost:4444")
        app.browser = MagicMock()
        app.browser.is_running.return_value = True
        app.request_stop()

        assert app.run() == 0

    def test_run_fails_when_start_has_no_url(self, no_signal_handlers):
        app = main.Application(main.build_parser().parse_args(["--direct"]))
        app.start = MagicMock(return_value=None)

        assert app.run() == 1


class TestMain:
    def test_missing_chromedriver_exits_with_error(self, no_signal_handlers):
        assert main.main([]) == 2

    def test_invalid_ports_exit_with_error(self):
        assert main.main(["--server-port", "5000", "--devtools-port", "5000"]) == 2

    def test_direct_mode_with_fake_chrome(self, fake_server, no_signal_handlers):
        with patch.object(main.Application, "run", autospec=True) as run:
            def start_and_return(app):
                url = app.start()
                assert app.browser.is_running()
                return 0 if url else 1

            run.side_effect = start_and_return

            assert main.main(["--direct", "--chrome", fake_server]) == 0

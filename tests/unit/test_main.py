"""Tests for the CLI entry point."""

import os
from unittest.mock import patch

from lens_agent.__main__ import build_parser, main
from lens_agent.config import get_config


class TestParser:
    """Argument defaults come from the configuration."""

    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            args = build_parser().parse_args([])
        assert args.llm_provider is None
        assert args.reload is False
        assert args.log_level == "INFO"

    def test_log_level_uppercased(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            args = build_parser().parse_args(["--log-level", "debug", "--port", "9000"])
        assert args.log_level == "DEBUG"
        assert args.port == 9000


class TestMain:
    """main() applies the provider override and starts uvicorn."""

    def test_provider_override(self) -> None:
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("sys.argv", ["lens-agent", "--llm-provider", "anthropic", "--port", "9001"]),
            patch("uvicorn.run") as mock_run,
        ):
            main()
            assert os.environ["LLM_PROVIDER"] == "anthropic"
            assert get_config().llm_provider == "anthropic"

        mock_run.assert_called_once()
        assert mock_run.call_args.args[0] == "lens_agent.api.webhook:app"
        assert mock_run.call_args.kwargs["port"] == 9001

"""Start the LensAgent HTTP service under uvicorn.

    lens-agent --port 9000 --log-level debug
    lens-agent --llm-provider local   # with LLM_BASE_URL pointing at the server

A provider given on the command line wins over LLM_PROVIDER; the cached
configuration is reset so the app picks it up.
"""

import argparse
import logging
import os


def build_parser() -> argparse.ArgumentParser:
    from lens_agent.config import get_config

    defaults = get_config()
    parser = argparse.ArgumentParser(
        description="LensAgent bug analysis service",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--llm-provider",
        choices=["openai", "anthropic", "local"],
        default=None,
        help="Chat model backend; 'local' talks to an OpenAI-compatible endpoint",
    )
    parser.add_argument("--host", default=defaults.server_host, help="Bind address")
    parser.add_argument("--port", type=int, default=defaults.server_port, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Restart on source changes")
    parser.add_argument(
        "--log-level",
        default=defaults.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Root logging level",
    )
    return parser


def main() -> None:
    """Parse CLI args and start the uvicorn server."""
    args = build_parser().parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.llm_provider is not None:
        from lens_agent.config import get_config

        os.environ["LLM_PROVIDER"] = args.llm_provider
        get_config.cache_clear()

    import uvicorn

    uvicorn.run(
        "lens_agent.api.webhook:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()

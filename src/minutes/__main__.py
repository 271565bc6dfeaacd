import argparse
import asyncio
import os
import sys
from pathlib import Path

from minutes.config import MinutesConfig, get_env_or_default, load_config_from_file
from minutes.logs import get_logger, setup_logging


def build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(prog="minutes", description="Meeting transcription server")
  parser.add_argument(
    "--host",
    type=str,
    default=get_env_or_default("MINUTES_HOST", "0.0.0.0"),
    help="Interface to bind. (Env: MINUTES_HOST)",
  )
  parser.add_argument(
    "--port",
    "-p",
    type=int,
    default=get_env_or_default("MINUTES_PORT", 9090, int),
    help="Websocket port to run the server on. (Env: MINUTES_PORT)",
  )
  parser.add_argument(
    "--config",
    type=str,
    default=get_env_or_default("MINUTES_CONFIG", None),
    help="Path to an optional YAML configuration file. (Env: MINUTES_CONFIG)",
  )
  parser.add_argument(
    "--debug_audio_path",
    type=str,
    default=None,
    help="Path prefix for debug audio files. When set, audio received from clients will be "
    "saved as .wav files for debugging.",
  )
  parser.add_argument(
    "--json_logs",
    action="store_true",
    default=get_env_or_default("JSON_LOGS", False, bool),
    help="Output logs in JSON format. (Env: JSON_LOGS)",
  )
  parser.add_argument(
    "--correlation_id",
    type=str,
    default=get_env_or_default("CORRELATION_ID", None),
    help="Correlation ID for log tracing. (Env: CORRELATION_ID)",
  )
  return parser


async def main(argv: list[str] | None = None) -> None:
  args = build_parser().parse_args(argv)

  log_level = os.getenv("LOG_LEVEL", "INFO").upper()
  setup_logging(level=log_level, json_output=args.json_logs, correlation_id=args.correlation_id)
  logger = get_logger("main")

  if args.config:
    try:
      config = load_config_from_file(Path(args.config))
    except ValueError as e:
      logger.error("Configuration validation failed", error=str(e), config_path=args.config)
      sys.exit(2)
  else:
    config = MinutesConfig()
  config.pretty_print()

  logger.info(
    "Starting Minutes Server",
    host=args.host,
    port=args.port,
    config_path=args.config,
    debug_audio_enabled=bool(args.debug_audio_path),
  )

  from minutes.server import TranscriptionServer

  server = TranscriptionServer(config, debug_audio_path=args.debug_audio_path)
  await server.run(args.host, port=args.port)


def run() -> None:
  try:
    asyncio.run(main())
  except KeyboardInterrupt:
    pass


if __name__ == "__main__":
  run()

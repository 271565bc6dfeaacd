#!/usr/bin/env python3
"""
Main entry point for the meeting capture client.
"""

import argparse
import asyncio
import os
import signal

from minutes.client.core import MeetingTranscriber
from minutes.logs import setup_logging
from minutes.transcript_log import SOURCE_LABELS
from minutes.wire import FinalMessage


def _device(value: str) -> str | int:
  return int(value) if value.isdigit() else value


def print_final(final: FinalMessage) -> None:
  print(f"[{SOURCE_LABELS[final.source]}] {final.text}", flush=True)


async def run_client(args: argparse.Namespace) -> None:
  transcriber = MeetingTranscriber(
    args.url,
    mic_device=args.mic_device,
    system_device=args.system_device,
    lang=args.lang,
    on_final=print_final,
  )

  loop = asyncio.get_running_loop()
  for sig in (signal.SIGINT, signal.SIGTERM):
    loop.add_signal_handler(sig, transcriber.stop)

  await transcriber.run()


def main() -> None:
  parser = argparse.ArgumentParser(description="Minutes meeting capture client")
  parser.add_argument("url", help="Server URL, e.g. ws://localhost:9090")
  parser.add_argument(
    "--mic-device", type=_device, default=None, help="Microphone device name or index"
  )
  parser.add_argument(
    "--system-device",
    type=_device,
    default=None,
    help="Loopback/system audio device name or index (optional)",
  )
  parser.add_argument("--lang", default="ja", help="Transcription language (default: ja)")
  args = parser.parse_args()

  setup_logging(level=os.getenv("LOG_LEVEL", "WARNING").upper())
  asyncio.run(run_client(args))


if __name__ == "__main__":
  main()

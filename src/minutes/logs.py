"""Structured logging for minutes, built on structlog and routed through stdlib logging."""

import logging
import os
import time
from typing import Any

import structlog
from structlog.dev import BRIGHT, DIM, RESET_ALL, Column, ConsoleRenderer, KeyValueColumnFormatter
from structlog.typing import EventDict, Processor, WrappedLogger

_PROGRAM_START_TIME = time.time()

_QUIET_LIBRARIES = ("websockets", "httpx", "httpcore")


def hex_to_ansi_fg(hex_color: int) -> str:
  """Convert a 0xRRGGBB color into a 24-bit ANSI foreground escape."""
  r = (hex_color >> 16) & 0xFF
  g = (hex_color >> 8) & 0xFF
  b = hex_color & 0xFF
  return f"\x1b[38;2;{r};{g};{b}m"


_LEVEL_STYLES: dict[str, tuple[str, int, int]] = {
  # level: (label, text color, bracket color)
  "debug": ("dbug", 0x908CAA, 0x827E99),
  "info": ("info", 0x9CCFD8, 0x8CBAC2),
  "warning": ("warn", 0xF6C177, 0xDDAE6B),
  "error": ("eror", 0xEB6F92, 0xD46483),
  "exception": ("exc!", 0xEB6F92, 0xD46483),
  "critical": ("crit", 0xEB6F92, 0xD46483),
}


class FloatPrecisionProcessor:
  """
  Round floats in the event dict, including floats nested inside lists and dicts.

  Keeps console output readable for values like RMS levels and durations, which
  otherwise print with 15+ significant digits.
  """

  def __init__(self, digits: int = 3, not_fields: frozenset[str] = frozenset()):
    self.digits = digits
    self.not_fields = not_fields

  def _round(self, value: Any) -> Any:
    if isinstance(value, bool):
      return value
    if isinstance(value, float):
      return round(value, self.digits)
    if isinstance(value, list):
      return [self._round(item) for item in value]
    if isinstance(value, dict):
      return {k: self._round(v) for k, v in value.items()}
    return value

  def __call__(self, _: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    for key, value in event_dict.items():
      if key in self.not_fields:
        continue
      event_dict[key] = self._round(value)
    return event_dict


def _relative_time_processor(
  _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> EventDict:
  """Stamp events with the time elapsed since program start, as [hh:][mm:]ss.mmm."""
  elapsed = time.time() - _PROGRAM_START_TIME
  hours = int(elapsed // 3600)
  minutes = int((elapsed % 3600) // 60)
  seconds = elapsed % 60

  gray = "\x1b[2m"
  dark_gray = "\x1b[90m"
  reset = "\x1b[0m"
  separator = f"{gray}:{reset}"

  hours_str = f"{gray}{hours:02d}{reset}{separator}" if hours else ""
  minutes_str = f"{gray}{minutes:02d}{reset}{separator}" if minutes or hours else ""
  event_dict["timestamp"] = (
    f"{dark_gray}+{reset}{hours_str}{minutes_str}{gray}{seconds:06.3f}{reset}"
  )
  return event_dict


def _compact_level_processor(
  _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> EventDict:
  """Replace the level name with a bracketed, colored 4-character label."""
  level = event_dict.get("level")
  if level in _LEVEL_STYLES:
    label, text_color, bracket_color = _LEVEL_STYLES[level]
    bracket = hex_to_ansi_fg(bracket_color)
    event_dict["level"] = (
      f"{bracket}[{RESET_ALL}{hex_to_ansi_fg(text_color)}{label}{bracket}]{RESET_ALL}"
    )
  return event_dict


def _console_renderer() -> ConsoleRenderer:
  logger_name_formatter = KeyValueColumnFormatter(
    key_style=None,
    value_style=hex_to_ansi_fg(0x7D6B95),
    reset_style=RESET_ALL,
    value_repr=str,
    prefix="[",
    postfix="]",
  )
  return ConsoleRenderer(
    colors=True,
    columns=[
      Column(
        "",
        KeyValueColumnFormatter(
          key_style=hex_to_ansi_fg(0x6E6A86),
          value_style=hex_to_ansi_fg(0xF6C177),
          reset_style=RESET_ALL,
          value_repr=str,
        ),
      ),
      Column(
        "timestamp",
        KeyValueColumnFormatter(
          key_style=None, value_style=DIM, reset_style=RESET_ALL, value_repr=str
        ),
      ),
      Column(
        "level",
        KeyValueColumnFormatter(
          key_style=None, value_style="", reset_style=RESET_ALL, value_repr=str
        ),
      ),
      Column("logger_name", logger_name_formatter),
      Column("logger", logger_name_formatter),
      Column(
        "event",
        KeyValueColumnFormatter(
          key_style=None, value_style=BRIGHT, reset_style=RESET_ALL, value_repr=str, width=30
        ),
      ),
    ],
  )


def setup_logging(
  level: str = "INFO", json_output: bool = False, correlation_id: str | None = None
) -> None:
  """Configure structlog and the stdlib root logger for the whole process."""
  # JSON output keeps plain level names and wall-clock timestamps
  if json_output:
    level_processors: list[Processor] = []
    time_processor: Processor = structlog.processors.TimeStamper(fmt="iso")
    log_renderer: Processor = structlog.processors.JSONRenderer()
  else:
    level_processors = [_compact_level_processor]
    time_processor = _relative_time_processor
    log_renderer = _console_renderer()

  shared_processors: list[Processor] = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    *level_processors,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.stdlib.ExtraAdder(),
    FloatPrecisionProcessor(digits=3),
    time_processor,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
  ]

  if correlation_id:
    shared_processors.insert(0, structlog.contextvars.merge_contextvars)
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

  structlog.configure(
    processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
  )

  formatter = structlog.stdlib.ProcessorFormatter(
    foreign_pre_chain=shared_processors,
    processors=[
      structlog.stdlib.ProcessorFormatter.remove_processors_meta,
      log_renderer,
    ],
  )

  handler = logging.StreamHandler()
  handler.setFormatter(formatter)
  root_logger = logging.getLogger()
  root_logger.handlers.clear()
  root_logger.addHandler(handler)
  root_logger.setLevel(level)

  for liblog in [logging.getLogger(name) for name in _QUIET_LIBRARIES]:
    liblog.handlers.clear()
    liblog.setLevel(logging.WARNING)
    liblog.propagate = True


def get_logger(
  name: str | None = None, *args: Any, **initial_values: Any
) -> structlog.stdlib.BoundLogger:
  """Get a structured logger instance."""
  return structlog.get_logger(*([name] + list(args)), **initial_values)


def setup_logging_from_env() -> None:
  """Setup logging from LOG_LEVEL, JSON_LOGS and CORRELATION_ID."""
  log_level = os.getenv("LOG_LEVEL", "INFO").upper()
  json_output = os.getenv("JSON_LOGS", "false").lower() in ("true", "1", "yes", "on")
  correlation_id = os.getenv("CORRELATION_ID")

  setup_logging(level=log_level, json_output=json_output, correlation_id=correlation_id)

# circulation/core/config.py
import os
import sys
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

# --- .env loading (project root) ---
project_root = Path(__file__).resolve().parent.parent.parent
dotenv_path = project_root / ".env"

if dotenv_path.is_file():
    logger.info(f"Loading environment variables from: {dotenv_path}")
    load_dotenv(dotenv_path=dotenv_path, override=False)
else:
    logger.debug(f".env file not found at {dotenv_path}. Relying on system environment variables.")


class InterceptHandler(logging.Handler):
    """Routes records from the standard logging module into Loguru."""
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(log_file: bool = True) -> None:
    """Configure Loguru sinks and intercept stdlib logging (uvicorn, apscheduler, ...)."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file_path = Path(os.getenv("LOG_FILE_PATH", "logs/circulation_{time:YYYY-MM-DD}.log"))
    log_rotation = os.getenv("LOG_ROTATION", "1 day")
    log_retention = os.getenv("LOG_RETENTION", "7 days")
    log_serialize = os.getenv("LOG_SERIALIZE", "False").lower() == "true"

    logger.remove()
    logger.add(sys.stderr, level=log_level_name, format=log_format, colorize=True)

    if log_file:
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                log_file_path,
                level=log_level_name,
                format=log_format,
                rotation=log_rotation,
                retention=log_retention,
                serialize=log_serialize,
                enqueue=True,
                backtrace=True,
                diagnose=False,
                encoding="utf-8",
            )
            logger.info(f"File logging enabled at: {log_file_path}")
        except OSError as e:
            logger.error(f"Failed to setup file logging at {log_file_path}: {e}")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(("uvicorn", "apscheduler", "fastapi", "starlette")):
            std_logger = logging.getLogger(name)
            std_logger.handlers = [InterceptHandler()]
            std_logger.propagate = False

    logger.info(f"Loguru logging setup complete. Level: {log_level_name}")


# --- Env helpers ---
def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}. Using default: {default}.")
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}. Using default: {default}.")
        return default


def _decimal_env(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        return Decimal(raw)
    except InvalidOperation:
        logger.warning(f"Invalid {name}={raw!r}. Using default: {default}.")
        return Decimal(default)


# --- Storage ---
STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory").lower()
MONGODB_URL: str = os.getenv("MONGODB_URL", "")
DATABASE_NAME: str = os.getenv("DATABASE_NAME", "library_circulation")

# --- Scheduler ---
EXPIRY_SWEEP_MINUTES: int = _int_env("EXPIRY_SWEEP_MINUTES", 15)
SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")
SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "True").lower() == "true"

# --- Logging ---
LOG_TO_FILE: bool = os.getenv("LOG_TO_FILE", "True").lower() == "true"

MAX_RENEWALS = 3


class LibraryPolicy(BaseModel):
    """Circulation rules shared by every service."""
    model_config = ConfigDict(frozen=True)

    loan_period_days: int = Field(default=14, gt=0)
    hold_window_days: int = Field(default=3, gt=0)
    reservation_lifetime_days: int = Field(default=30, gt=0)
    max_renewals: int = Field(default=MAX_RENEWALS, ge=0, le=MAX_RENEWALS)
    fine_rate_per_day: Decimal = Field(default=Decimal("0.50"), gt=0)
    unpaid_fine_limit: Decimal = Field(default=Decimal("10.00"), ge=0)
    damage_fee: Decimal = Field(default=Decimal("5.00"), ge=0)
    lost_item_fee: Decimal = Field(default=Decimal("25.00"), ge=0)
    lock_timeout_seconds: float = Field(default=2.0, gt=0)


def load_policy() -> LibraryPolicy:
    policy = LibraryPolicy(
        loan_period_days=_int_env("LOAN_PERIOD_DAYS", 14),
        hold_window_days=_int_env("HOLD_WINDOW_DAYS", 3),
        reservation_lifetime_days=_int_env("RESERVATION_LIFETIME_DAYS", 30),
        fine_rate_per_day=_decimal_env("FINE_RATE_PER_DAY", "0.50"),
        unpaid_fine_limit=_decimal_env("UNPAID_FINE_LIMIT", "10.00"),
        damage_fee=_decimal_env("DAMAGE_FEE", "5.00"),
        lost_item_fee=_decimal_env("LOST_ITEM_FEE", "25.00"),
        lock_timeout_seconds=_float_env("LOCK_TIMEOUT_SECONDS", 2.0),
    )
    logger.info(
        f"Policy loaded: loan={policy.loan_period_days}d hold={policy.hold_window_days}d "
        f"rate={policy.fine_rate_per_day}/day limit={policy.unpaid_fine_limit}"
    )
    return policy

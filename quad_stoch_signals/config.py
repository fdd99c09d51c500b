from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, List
import os
import yaml

from .models import SignalStrength


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _env_list(value: List[str], env_key: str) -> List[str]:
    env_val = os.getenv(env_key)
    if not env_val:
        return value
    return [x.strip() for x in env_val.split(",") if x.strip()]


ANGLE_METHODS = ("pairwise", "slope")


@dataclass(frozen=True)
class SignalConfig:
    # Zones
    oversold_level: float = 20.0
    overbought_level: float = 80.0

    # Divergence
    min_divergence_angle: float = 7.0
    lookback_period: int = 50
    min_divergence_span: int = 5
    swing_window: int = 3
    min_swing_size: float = 0.0005
    divergence_angle_method: str = "pairwise"  # pairwise | slope

    # Channel
    channel_lookback: int = 50
    channel_threshold_pct: float = 2.0

    # Confluence
    volume_spike_multiplier: float = 1.5

    # Levels / sizing (percent)
    stop_loss_buffer: float = 0.1
    target1_percent: float = 0.5
    target2_percent: float = 1.0
    target3_percent: float = 2.0
    default_position_size: float = 2.0
    max_position_size: float = 5.0
    min_risk_reward: float = 1.5

    # Output policy
    min_notification_strength: SignalStrength = SignalStrength.MODERATE
    min_candles: int = 60
    max_signals_per_evaluation: int = 3
    interval: str = "1m"
    debug_invariants: bool = False

    # Repository / lifecycle
    duplicate_window_s: int = 300
    max_active_signals: int = 20
    history_limit: int = 100
    signal_expiry_s: int = 300
    archive_on_target2: bool = False

    def validate(self) -> None:
        errs = []
        if not (0 <= self.oversold_level <= 100):
            errs.append("oversold_level must be within 0..100")
        if not (0 <= self.overbought_level <= 100):
            errs.append("overbought_level must be within 0..100")
        if self.oversold_level >= self.overbought_level:
            errs.append("oversold_level must be below overbought_level")
        if not (0 <= self.min_divergence_angle <= 90):
            errs.append("min_divergence_angle must be within 0..90")
        if self.divergence_angle_method not in ANGLE_METHODS:
            errs.append(f"divergence_angle_method must be one of {ANGLE_METHODS}")
        for name in (
            "lookback_period",
            "min_divergence_span",
            "swing_window",
            "channel_lookback",
            "min_candles",
            "max_signals_per_evaluation",
            "max_active_signals",
            "history_limit",
        ):
            if int(getattr(self, name)) < 1:
                errs.append(f"{name} must be >= 1")
        if self.min_swing_size < 0:
            errs.append("min_swing_size must be >= 0")
        if self.stop_loss_buffer < 0:
            errs.append("stop_loss_buffer must be >= 0")
        if self.target1_percent <= 0:
            errs.append("target1_percent must be > 0")
        if not (self.target1_percent < self.target2_percent < self.target3_percent):
            errs.append("targets must be strictly ascending (target1 < target2 < target3)")
        if self.default_position_size <= 0 or self.max_position_size <= 0:
            errs.append("position sizes must be > 0")
        if self.default_position_size > self.max_position_size:
            errs.append("default_position_size must not exceed max_position_size")
        if self.volume_spike_multiplier <= 0:
            errs.append("volume_spike_multiplier must be > 0")
        if self.min_risk_reward < 0:
            errs.append("min_risk_reward must be >= 0")
        if self.duplicate_window_s < 0 or self.signal_expiry_s < 0:
            errs.append("time windows must be >= 0")
        if errs:
            raise ValueError("Signal config violation: " + "; ".join(errs))

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SignalConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(f"Unknown signal config keys: {unknown}")
        data = dict(raw)
        if "min_notification_strength" in data:
            data["min_notification_strength"] = SignalStrength(str(data["min_notification_strength"]).upper())
        return cls(**data)


@dataclass
class ProviderConfig:
    type: str = "binance"
    market: str = "futures"  # futures|spot
    rest_timeout_s: int = 20
    ws_heartbeat_s: int = 20
    stream_prices: bool = True
    live_signals: bool = True
    warmup_concurrency: int = 5


@dataclass
class ScannerConfig:
    symbols: List[str] = None
    scan_interval_s: int = 60
    batch_size: int = 4
    max_workers: int = 4
    task_timeout_s: float = 20.0
    candle_limit: int = 200
    use_processes: bool = True


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True
    min_strength: str = "MODERATE"


@dataclass
class AppConfig:
    name: str = "Quad Stoch Scanner"
    log_level: str = "INFO"


@dataclass
class Config:
    app: AppConfig
    provider: ProviderConfig
    scanner: ScannerConfig
    signal: SignalConfig
    telegram: TelegramConfig


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    app = raw.get("app", {})
    provider = raw.get("provider", {})
    scanner = raw.get("scanner", {})
    signal = raw.get("signal", {})
    tg = raw.get("telegram", {})

    cfg = Config(
        app=AppConfig(**app),
        provider=ProviderConfig(**provider),
        scanner=ScannerConfig(**scanner),
        signal=SignalConfig.from_dict(signal),
        telegram=TelegramConfig(**tg),
    )

    # env overrides (useful on servers)
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    cfg.telegram.chat_ids = _env_list(cfg.telegram.chat_ids or [], "TELEGRAM_CHAT_IDS")
    cfg.scanner.symbols = [s.upper() for s in _env_list(cfg.scanner.symbols or [], "SCANNER_SYMBOLS")]
    cfg.scanner.scan_interval_s = _env_override(cfg.scanner.scan_interval_s, "SCANNER_INTERVAL_S")

    validate_config(cfg)
    return cfg


def validate_config(cfg: Config) -> None:
    cfg.signal.validate()
    errs = []
    if cfg.scanner.scan_interval_s <= 0:
        errs.append("scanner.scan_interval_s must be > 0")
    if cfg.scanner.batch_size < 1 or cfg.scanner.max_workers < 1:
        errs.append("scanner.batch_size and scanner.max_workers must be >= 1")
    if cfg.scanner.candle_limit < cfg.signal.min_candles:
        errs.append("scanner.candle_limit must cover signal.min_candles")
    try:
        SignalStrength(str(cfg.telegram.min_strength).upper())
    except ValueError:
        errs.append("telegram.min_strength must be one of WEAK|MODERATE|STRONG|SUPER")
    if errs:
        raise ValueError("Config violation: " + "; ".join(errs))


from dataclasses import dataclass
from typing import Optional

from src.parsers import DEFAULT_NGINX_FORMAT, FILE_TYPES


@dataclass
class ReplayConfig:
    """Settings for one replay run."""
    input_file: str = '-'
    file_type: str = 'nginx'
    log_format: str = DEFAULT_NGINX_FORMAT
    log_file: str = '-'
    prefix: str = 'http://localhost'
    ratio: float = 1
    debug: bool = False
    timeout_ms: int = 60000
    skip_sleep: bool = False
    enable_window: bool = False
    window_size: int = 1000
    error_rate: float = 40
    ssl_skip_verify: bool = False
    basic_auth_user: str = ''
    basic_auth_password: str = ''
    max_in_flight: int = 0
    count_build_errors: bool = False
    metrics_file: Optional[str] = None
    metrics_interval: float = 5

    @property
    def timeout(self) -> Optional[float]:
        """Per-request timeout in seconds, None when disabled."""
        if self.timeout_ms <= 0:
            return None
        return self.timeout_ms / 1000

    @property
    def basic_auth(self):
        if self.basic_auth_user and self.basic_auth_password:
            return (self.basic_auth_user, self.basic_auth_password)
        return None

    def validate(self):
        """Raise ValueError describing the first invalid setting."""
        if self.file_type not in FILE_TYPES:
            raise ValueError(f"file-type can be one of {', '.join(FILE_TYPES)}, not '{self.file_type}'")
        if self.ratio < 1:
            raise ValueError(f"ratio must be >= 1, got {self.ratio}")
        if self.timeout_ms < 0:
            raise ValueError(f"timeout must not be negative, got {self.timeout_ms}")
        if self.max_in_flight < 0:
            raise ValueError(f"max-in-flight must not be negative, got {self.max_in_flight}")
        if self.enable_window:
            if self.window_size < 1:
                raise ValueError(f"window-size must be positive, got {self.window_size}")
            if not 0 < self.error_rate < 100:
                raise ValueError(f"error-rate must be between 0 and 100, got {self.error_rate}")
        if self.metrics_file and self.metrics_interval <= 0:
            raise ValueError(f"metrics-interval must be positive, got {self.metrics_interval}")

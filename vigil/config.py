from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Runtime settings loaded from environment / .env file.

    Everything that describes *what* to probe lives in the YAML config file
    (see ``vigil.targets``); these settings tune *how* probing is done.
    """

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "VIGIL_",
        "extra": "ignore",
    }

    # Targets file (absolute or relative to CWD)
    config_file: str = "vigil.yaml"

    # Logging
    log_level: str = "INFO"
    log_rich: bool = True  # coloured console output via rich

    # ICMP
    ping_timeout: float = 10.0  # seconds, overridden by `timeout:` in the YAML
    icmp_privileged: bool = False  # SOCK_RAW (needs CAP_NET_RAW) vs SOCK_DGRAM
    icmp_ipv6_zone: str = ""  # outgoing interface for IPv6 echo requests

    # SSH
    ssh_connect_timeout: float = 10.0
    ssh_command_timeout: float = 30.0
    ssh_strict_host_key: bool = False
    ssh_log_lines: int = 20  # lines of program log attached to ProcessMissing
    process_command: str = "pgrep {pattern}"  # {pattern} is replaced by the shell-quoted process

    # Chat notifications (optional)
    slack_webhook_url: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    discord_webhook_url: str = ""


settings = Settings()

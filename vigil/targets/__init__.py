from vigil.targets.registry import (
    ConfigError,
    HostDef,
    MailConfig,
    PingTarget,
    ProgramCheck,
    SSHServer,
    TargetRegistry,
    VigilConfig,
    load_config,
    parse_duration,
)

__all__ = [
    "ConfigError",
    "HostDef",
    "MailConfig",
    "PingTarget",
    "ProgramCheck",
    "SSHServer",
    "TargetRegistry",
    "VigilConfig",
    "load_config",
    "parse_duration",
]

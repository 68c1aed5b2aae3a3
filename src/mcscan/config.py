import os
from dataclasses import dataclass, replace

from mcscan.exceptions import ConfigError

MINECRAFT_PORT = 25565


@dataclass(frozen=True)
class ScanConfig:
    """Settings for one scanner process.

    Built once (usually with ``from_env``) and passed to every component
    call instead of module-level constants.
    """

    port: int = MINECRAFT_PORT
    timeout: float = 3.0  # TCP probe, seconds
    handshake_timeout: float = 3.0  # whole status exchange, seconds
    batch_pause: float = 0.05
    default_batch_size: int = 25
    max_batch_size: int = 500
    log_path: str = "scan.log"
    protocol_version: int = 47
    es_hosts: tuple = ("http://localhost:9200",)
    es_index: str = "minecraft_servers"
    es_request_timeout: int = 30

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        base = cls()
        try:
            hosts = env.get("MCSCAN_ES_HOSTS")
            return cls(
                port=int(env.get("MCSCAN_PORT", base.port)),
                timeout=float(env.get("MCSCAN_TIMEOUT", base.timeout)),
                handshake_timeout=float(env.get("MCSCAN_HANDSHAKE_TIMEOUT", base.handshake_timeout)),
                batch_pause=int(env.get("MCSCAN_BATCH_PAUSE_MS", int(base.batch_pause * 1000))) / 1000,
                default_batch_size=int(env.get("MCSCAN_DEFAULT_BATCH_SIZE", base.default_batch_size)),
                max_batch_size=int(env.get("MCSCAN_MAX_BATCH_SIZE", base.max_batch_size)),
                log_path=env.get("MCSCAN_LOG_PATH", base.log_path),
                protocol_version=int(env.get("MCSCAN_PROTOCOL_VERSION", base.protocol_version)),
                es_hosts=tuple(h.strip() for h in hosts.split(",") if h.strip()) if hosts else base.es_hosts,
                es_index=env.get("MCSCAN_ES_INDEX", base.es_index),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid scanner configuration: {e}") from e

    def with_overrides(self, **changes):
        """Copy with the non-None keyword arguments applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

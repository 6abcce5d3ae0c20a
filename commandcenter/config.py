"""Configuration management for the command center."""

from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommandCenterConfig(BaseSettings):
    """Configuration for the command center and its consumers."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # HTTP / WebSocket service
    service_name: str = "command_center"
    host: str = "0.0.0.0"
    port: int = 3000

    # Remote host (SSH)
    ssh_host: str = "nasty"
    ssh_port: int = 22
    ssh_username: str = "pi"
    ssh_private_key: Path = Path.home() / ".ssh" / "id_rsa"
    ssh_key_passphrase: Optional[str] = None
    ssh_known_hosts: Optional[Path] = None  # None accepts any host key
    ssh_connect_timeout: float = 10.0
    ssh_poll_interval: float = 0.05  # seconds between channel polls

    # Transport algorithm suites, in preference order
    ssh_kex_algorithms: List[str] = [
        "curve25519-sha256",
        "curve25519-sha256@libssh.org",
        "ecdh-sha2-nistp256",
        "ecdh-sha2-nistp384",
        "ecdh-sha2-nistp521",
        "diffie-hellman-group-exchange-sha256",
    ]
    ssh_ciphers: List[str] = [
        "aes128-ctr",
        "aes192-ctr",
        "aes256-ctr",
        "aes128-gcm@openssh.com",
        "aes256-gcm@openssh.com",
    ]
    ssh_host_key_algorithms: List[str] = [
        "ssh-rsa",
        "ecdsa-sha2-nistp256",
        "ssh-ed25519",
    ]
    ssh_mac_algorithms: List[str] = [
        "hmac-sha2-256",
        "hmac-sha2-512",
    ]

    # Execution
    command_timeout: Optional[float] = 300.0  # None disables the ceiling
    status_commands: List[str] = [
        "uptime",
        "free -h",
        "df -h",
        "vcgencmd measure_temp",
        "hostname -I",
    ]

    # External reasoning service (OpenAI-compatible chat completions)
    deepseek_api_key: Optional[str] = None
    deepseek_base_url: str = "https://api.deepseek.com/v1"
    deepseek_model: str = "deepseek-chat"
    deepseek_temperature: float = 0.7
    deepseek_max_tokens: int = 1000
    translate_timeout: float = 20.0
    translation_confidence_threshold: float = 0.8
    analysis_timeout: float = 10.0  # base timeout, doubled per attempt
    analysis_max_attempts: int = 2

    # Event fan-out
    event_queue_size: int = 1000
    history_size: int = 20

    # Message bus relay
    nats_url: str = "nats://localhost:4222"
    nats_max_reconnect_attempts: int = 10
    events_subject_prefix: str = "commandcenter.events"

    # Discord chat bot (disabled without a token)
    discord_token: Optional[str] = None
    discord_channel_id: Optional[int] = None

    # Logging
    log_level: str = "INFO"

    @property
    def reasoning_enabled(self) -> bool:
        """Whether an external reasoning service is configured."""
        return bool(self.deepseek_api_key)


def get_config() -> CommandCenterConfig:
    """Get a configuration instance."""
    return CommandCenterConfig()

"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .file.storage import CHUNK_SIZE
from .transfer.protocol import MAX_FRAME_SIZE


@dataclass
class Config:
    """
    Transfer server configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (RXF_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 8899

    # Storage
    storage_dir: Path = field(default_factory=lambda: Path('./ServerFiles'))

    # Protocol
    chunk_size: int = CHUNK_SIZE
    max_frame_size: int = MAX_FRAME_SIZE

    # Client
    timeout: float = 30.0

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv('RXF_HOST', config.host)
        config.port = int(os.getenv('RXF_PORT', config.port))

        # Storage
        storage_dir = os.getenv('RXF_STORAGE_DIR')
        if storage_dir:
            config.storage_dir = Path(storage_dir)

        # Protocol
        config.chunk_size = int(os.getenv('RXF_CHUNK_SIZE', config.chunk_size))
        config.max_frame_size = int(os.getenv('RXF_MAX_FRAME_SIZE', config.max_frame_size))

        config.timeout = float(os.getenv('RXF_TIMEOUT', config.timeout))

        # Logging
        config.log_level = os.getenv('RXF_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        config.host = data.get('host', config.host)
        config.port = data.get('port', config.port)

        if 'storage_dir' in data:
            config.storage_dir = Path(data['storage_dir'])

        config.chunk_size = data.get('chunk_size', config.chunk_size)
        config.max_frame_size = data.get('max_frame_size', config.max_frame_size)
        config.timeout = data.get('timeout', config.timeout)

        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'storage_dir': str(self.storage_dir),
            'chunk_size': self.chunk_size,
            'max_frame_size': self.max_frame_size,
            'timeout': self.timeout,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    config = Config()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    env_config = Config.from_env()

    # Env takes precedence for non-default values
    defaults = Config()
    for key in ['host', 'port', 'storage_dir', 'chunk_size',
                'max_frame_size', 'timeout', 'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config

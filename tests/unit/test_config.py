"""
Unit tests for ServerConfig and TimingPolicy.
"""

import dataclasses

import pytest

from soclose.config import ServerConfig, MiB
from soclose.errors import ConfigError
from soclose.timing import TimingPolicy, BLOCK_SIZE, BLOCK


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        config = ServerConfig()
        config.validate()

        assert config.file_size == 100 * MiB
        assert config.send == 95 * MiB
        assert config.throttle is None
        assert config.wait == 0.0
        assert config.timeout == 10.0
        assert config.headers == {}

    def test_frozen(self):
        """Test that config cannot change once shared between threads."""
        config = ServerConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.send = 0

    def test_port_zero_allowed(self):
        ServerConfig(port=0).validate()

    def test_send_may_exceed_file_size(self):
        ServerConfig(file_size=10, send=1 * MiB).validate()

    @pytest.mark.parametrize("overrides", [
        {"file_size": -1},
        {"send": -1},
        {"throttle": 0},
        {"wait": -0.5},
        {"timeout": 0},
        {"port": 65536},
        {"backlog": 0},
        {"max_connections": 0},
        {"log_level": "LOUD"},
        {"headers": {b"": b"x"}},
        {"headers": {b"X-Bad:Name": b"x"}},
        {"headers": {b"X-Split": b"a\r\nInjected: yes"}},
    ])
    def test_validate_rejects(self, overrides):
        with pytest.raises(ConfigError):
            ServerConfig(**overrides).validate()

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            ServerConfig(wait=-1).validate()


class TestTimingPolicy:
    """Tests for TimingPolicy derivation."""

    def test_block_count_is_floored(self):
        timing = TimingPolicy.from_config(ServerConfig(send=3 * BLOCK_SIZE + 8191))

        assert timing.block_size == 8192
        assert timing.block_count == 3
        assert timing.body_size == 3 * 8192

    def test_send_smaller_than_block(self):
        assert TimingPolicy.from_config(ServerConfig(send=8191)).block_count == 0

    def test_default_example(self):
        """Test the 95MiB default: already a multiple of the block size."""
        timing = TimingPolicy.from_config(ServerConfig())
        assert timing.body_size == (95 * MiB // 8192) * 8192 == 95 * MiB

    def test_block_count_ignores_file_size(self):
        small = TimingPolicy.from_config(ServerConfig(file_size=1, send=10 * BLOCK_SIZE))
        large = TimingPolicy.from_config(ServerConfig(file_size=10 ** 12, send=10 * BLOCK_SIZE))
        assert small.block_count == large.block_count == 10

    def test_no_throttle_means_no_delay(self):
        assert TimingPolicy.from_config(ServerConfig()).inter_block_delay == 0.0

    def test_throttle_delay(self):
        timing = TimingPolicy.from_config(ServerConfig(throttle=1 * MiB))
        assert timing.inter_block_delay == pytest.approx(8192 / 1048576)

    def test_throttle_of_one_block_per_second(self):
        timing = TimingPolicy.from_config(ServerConfig(throttle=BLOCK_SIZE))
        assert timing.inter_block_delay == 1.0

    def test_idle_and_deadline(self):
        timing = TimingPolicy.from_config(ServerConfig(wait=2.5, timeout=None))
        assert timing.idle_after_send == 2.5
        assert timing.io_deadline is None

    def test_block_is_zeros(self):
        assert len(BLOCK) == BLOCK_SIZE
        assert BLOCK.count(0) == BLOCK_SIZE

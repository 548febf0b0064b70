"""Tests for logging system"""

from pathlib import Path

from tradebot.utils.logger import LoggerMixin, get_logger, log_context, setup_logging


class TestLogger:
    """Test logging functionality"""

    def test_get_logger(self, tmp_path: Path):
        """Test getting a logger"""
        setup_logging(
            log_level="INFO",
            log_dir=tmp_path / "logs",
            log_to_console=False,
            log_to_file=False,
        )
        logger = get_logger("test")
        assert logger is not None
        assert hasattr(logger, "info")

    def test_get_logger_with_bound_context(self):
        """Test a logger can carry pre-bound context"""
        logger = get_logger("test", strategy="grid", symbol="ETH")
        assert hasattr(logger, "warning")

    def test_logger_mixin(self, tmp_path: Path):
        """Test LoggerMixin"""
        setup_logging(
            log_level="INFO",
            log_dir=tmp_path / "logs",
            log_to_console=False,
            log_to_file=False,
        )

        class Component(LoggerMixin):
            pass

        obj = Component()
        assert hasattr(obj.logger, "info")

    def test_log_context(self):
        """Test log context manager binds and unbinds cleanly"""
        logger = get_logger("test")

        with log_context(strategy="dca", symbol="BTC"):
            logger.info("inside_context")

    def test_setup_logging_creates_log_files(self, tmp_path: Path):
        """Test file logging setup"""
        log_dir = tmp_path / "logs"
        setup_logging(
            log_level="DEBUG",
            log_dir=log_dir,
            log_to_console=False,
            log_to_file=True,
        )

        assert log_dir.exists()
        assert (log_dir / "bot.log").exists()
        assert (log_dir / "error.log").exists()

        get_logger("test_setup").info("test message")

    def test_setup_logging_json(self, tmp_path: Path):
        """Test JSON rendering setup"""
        setup_logging(
            log_level="WARNING",
            log_dir=tmp_path / "logs",
            log_to_console=False,
            log_to_file=False,
            json_logs=True,
        )
        get_logger("test_json").warning("json_event", value=1)

    def test_log_context_drops_none_values(self):
        """Test unset fields are not bound"""
        ctx = log_context(bot_id="bot-1", user_id=None)

        assert ctx.context == {"bot_id": "bot-1"}

    def test_logger_mixin_binds_context(self):
        """Test subclasses can bind identifying fields"""

        class Component(LoggerMixin):
            def _log_context(self):
                return {"symbol": "ETH"}

        assert Component()._log_context() == {"symbol": "ETH"}
        assert LoggerMixin()._log_context() == {}

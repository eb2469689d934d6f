from enum import Enum

from env_utils import parse_bool_env


class LogChannel(Enum):
    GLOBAL = "GLOBAL"
    CUDA = "CUDA"
    TRT = "TRT"


class LogLevel(Enum):
    WARNING = "WARN"
    DEBUG = "DEBUG"


class FilteredLogger:
    def __init__(self):
        self.extreme_debug = parse_bool_env('TRT_RUNNER_DEBUG', '0')
        self.cuda_debug = parse_bool_env('CUDA_DEBUG_LOGS', '0')
        self.trt_debug = parse_bool_env('TRT_DEBUG_LOGS', '0')

    def configure(self, *, extreme_debug=None, cuda_debug=None, trt_debug=None):
        if extreme_debug is not None:
            self.extreme_debug = extreme_debug
        if cuda_debug is not None:
            self.cuda_debug = cuda_debug
        if trt_debug is not None:
            self.trt_debug = trt_debug

    def should_log_debug(self, channel):
        if self.extreme_debug:
            return True
        if channel == LogChannel.GLOBAL:
            return self.cuda_debug or self.trt_debug
        if channel == LogChannel.CUDA:
            return self.cuda_debug
        if channel == LogChannel.TRT:
            return self.trt_debug
        return False

    def _print(self, level, channel, message):
        prefix = f"[{level.value}]"
        channel_tag = f"[{channel.value}]"
        for line in str(message).splitlines():
            print(f"{prefix} {channel_tag} {line}")

    def warning(self, channel, message):
        self._print(LogLevel.WARNING, channel, message)

    def debug(self, channel, message):
        if not self.should_log_debug(channel):
            return
        self._print(LogLevel.DEBUG, channel, message)


_shared_logger = FilteredLogger()


def configure_logger(**kwargs):
    _shared_logger.configure(**kwargs)


def warning(channel, message):
    _shared_logger.warning(channel, message)


def debug(channel, message):
    _shared_logger.debug(channel, message)

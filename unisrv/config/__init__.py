from unisrv.config.settings import CliSettings, DEFAULT_API_URL

__all__ = ["CliSettings", "DEFAULT_API_URL"]

from .settings import Settings, RemoteHost, Paths, JobCfg, LoggingCfg

__all__ = ["Settings", "RemoteHost", "Paths", "JobCfg", "LoggingCfg"]

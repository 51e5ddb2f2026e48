from logfeed.monitoring.manager import LogFeedService
from logfeed.monitoring.monitor import MonitorReport, MonitorState, MonitorStatus, ServiceMonitor

__all__ = ["LogFeedService", "MonitorReport", "MonitorState", "MonitorStatus", "ServiceMonitor"]

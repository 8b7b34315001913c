from verity.reports.base import Reporter
from verity.reports.console import ConsoleReporter


__all__ = ["ConsoleReporter", "Reporter"]

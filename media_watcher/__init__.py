"""Zabbix media type and user group watcher."""

__version__ = "0.1.0"

from __future__ import annotations

from loadcheck.report.summary import Report, render, write_report

__all__ = ["Report", "render", "write_report"]

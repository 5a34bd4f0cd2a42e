"""
LaS-VPE: pipeline substrate for distributed video analytics.

Carries one task's execution plan and payload through a DAG of pluggable
stages wired over a publish/subscribe bus.
"""

__version__ = "0.4.0"

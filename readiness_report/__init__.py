"""Release-readiness status report generator.

Turns spreadsheet tracking rows into HTML/xlsx status reports with optional
escalation notices, executed off the caller thread by a job controller.
"""

__version__ = "0.3.0"

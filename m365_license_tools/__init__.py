"""
M365 License Tools
==================
Administrative tooling for Microsoft 365 license hygiene:

  * export  - list users holding a license by direct assignment (not via group)
  * remove  - remove a license from every user listed in a CSV file

Removal is the only write operation, and the Safety Guardian restricts it to
the Graph assignLicense action.
"""

__version__ = "1.0.0"
__author__ = "M365 License Tools"

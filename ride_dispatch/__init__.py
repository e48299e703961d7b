# ride_dispatch/__init__.py
"""
Движок диспетчеризации поездок и торга о цене.
"""

__version__ = "1.0.0"

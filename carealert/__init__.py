"""CareAlert: safe-zone monitoring and emergency alert dispatch"""

__version__ = "1.0.0"
